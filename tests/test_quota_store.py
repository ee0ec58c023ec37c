import uuid
from datetime import timedelta

from chat_backend.api.models import QuotaResource
from chat_backend.database.entities.quota import QuotaCounter
from chat_backend.database.helpers.clock import utcnow


def expire_counter(session_factory, user_id, resource):
    with session_factory() as session:
        row = session.get(QuotaCounter, (user_id, resource.value))
        row.period_start = utcnow() - timedelta(days=2)
        row.period_end = utcnow() - timedelta(days=1)
        session.commit()


def test_check_without_counter_is_allowed_and_writes_nothing(quota_store, session_factory):
    user_id = uuid.uuid4()

    decision = quota_store.check(user_id, "user", QuotaResource.MESSAGES)

    assert decision.allowed
    assert decision.counter == 0
    assert decision.limit == 5
    assert decision.period_end is None
    with session_factory() as session:
        assert session.query(QuotaCounter).count() == 0


def test_increment_opens_a_window_and_accumulates(quota_store):
    user_id = uuid.uuid4()

    first = quota_store.increment(user_id, "user", QuotaResource.TOKENS, 300)
    second = quota_store.increment(user_id, "user", QuotaResource.TOKENS, 200)

    assert first.used == 300
    assert second.used == 500
    assert second.period_end == first.period_end
    assert second.period_end > utcnow() + timedelta(hours=23)
    assert not second.is_over_limit


def test_counter_at_limit_denies_with_reason(quota_store):
    user_id = uuid.uuid4()
    for _ in range(5):
        usage = quota_store.increment(user_id, "user", QuotaResource.MESSAGES, 1)

    decision = quota_store.check(user_id, "user", QuotaResource.MESSAGES)

    assert usage.is_over_limit
    assert not decision.allowed
    assert decision.reason == "MESSAGES_LIMIT_EXCEEDED"
    assert decision.period_end == usage.period_end


def test_expired_window_reads_as_zero_until_next_increment(quota_store, session_factory):
    user_id = uuid.uuid4()
    for _ in range(5):
        quota_store.increment(user_id, "user", QuotaResource.MESSAGES, 1)
    expire_counter(session_factory, user_id, QuotaResource.MESSAGES)

    decision = quota_store.check(user_id, "user", QuotaResource.MESSAGES)
    assert decision.allowed
    assert decision.counter == 0

    # check didn't reset the stored row
    with session_factory() as session:
        assert session.get(QuotaCounter, (user_id, "messages")).counter == 5

    usage = quota_store.increment(user_id, "user", QuotaResource.MESSAGES, 1)
    assert usage.used == 1
    assert not usage.is_over_limit
    assert usage.period_end > utcnow()


def test_limits_follow_the_role(quota_store):
    user_id = uuid.uuid4()

    assert quota_store.check(user_id, "guest", QuotaResource.MESSAGES).limit == 10
    assert quota_store.check(user_id, "admin", QuotaResource.FILES).limit == 200
    # unknown roles get the guest entitlements
    assert quota_store.check(user_id, "robot", QuotaResource.TOKENS).limit == 20000


def test_snapshot_lists_every_resource(quota_store):
    user_id = uuid.uuid4()
    quota_store.increment(user_id, "user", QuotaResource.FILES, 2)

    snapshot = {usage.resource: usage for usage in quota_store.snapshot(user_id, "user")}

    assert set(snapshot) == set(QuotaResource)
    assert snapshot[QuotaResource.FILES].used == 2
    assert snapshot[QuotaResource.FILES].is_over_limit
    assert snapshot[QuotaResource.MESSAGES].used == 0
    assert snapshot[QuotaResource.MESSAGES].period_end is None
