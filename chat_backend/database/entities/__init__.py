"""
Entities Package — SQLAlchemy 2.0 ORM Models (UUID + UTC)
=========================================================

ORM models mapping the chat tables to Python classes using SQLAlchemy
2.0-typed mappings. They are consumed by the DAOs (`daos` package) and never
leave the store services, which hand out pydantic records instead.

Conventions
-----------
- Portable `Uuid` columns (native on PostgreSQL, CHAR(32) on SQLite)
- Timezone-aware timestamps, always written in UTC
- `Mapped[...]` + `mapped_column(...)`

Contents
--------
- Conversation (`conversation`)
    * `id`, `owner_id`, `title`, `visibility` ("private" | "public")
    * `created_at`, `updated_at` (bumped per committed turn), `visible_at`

- ChatTurn (`turn`)
    * `id`, `conversation_id` (FK → conversation.id), `author_id`, `role`
    * ordered JSON `parts` plus denormalised `content`
    * usage (`input_tokens`, `output_tokens`, `total_tokens`), `finish_reason`, `model`
    * vote flags; total order `(created_at, id)`

- QuotaCounter (`quota_counter`)
    * primary key `(user_id, resource)`; `counter` within `[period_start, period_end)`
    * `is_over_limit` set by the increment that reached the limit
"""
