"""
Hypothesis Property-Based Tests for service state and naming helpers.

Uses Hypothesis to generate random inputs and verify:
- Provisioning status only ever moves forward under guarded writes
- Concurrent provisioning of one subscription converges on one service
- Instance labels and hostnames are always provider-safe
- Calendar month arithmetic stays within the target month
"""

import asyncio
import re
from datetime import UTC, datetime
from uuid import uuid4

from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from app.models.api import BillingCycle, ProvisioningStatus, UserRole
from app.models.domain import (
    PROVISIONING_TRANSITIONS,
    Credentials,
    ProvisioningRequest,
    UserAggregate,
    can_transition,
    transition_sources,
)
from app.services.cloud_provider import MAX_HOSTNAME_LENGTH, sanitize_hostname
from app.services.provisioning import build_label
from app.services.subscription_sync import add_months

# ============================================================================
# Hypothesis Strategies - Reusable data generators
# ============================================================================

statuses = st.sampled_from(list(ProvisioningStatus))

names = st.one_of(st.none(), st.text(max_size=40))

fixture_settings = settings(
    max_examples=50,
    suppress_health_check=[HealthCheck.function_scoped_fixture],
    deadline=None,
)

CREDENTIALS = Credentials("203.0.113.5", "Administrator", "s3cret")
TERMINAL = {ProvisioningStatus.FAILED, ProvisioningStatus.TERMINATED}


# ============================================================================
# Transition Table Properties
# ============================================================================


class TestTransitionProperties:
    """Properties of the forward-only transition table."""

    @given(current=statuses, target=statuses)
    def test_sources_agree_with_can_transition(self, current, target):
        assert (current in transition_sources(target)) == can_transition(current, target)

    @given(status=statuses)
    def test_no_self_transitions(self, status):
        assert can_transition(status, status) is False

    @given(target=statuses)
    def test_nothing_leaves_terminal_states(self, target):
        for terminal in TERMINAL:
            assert can_transition(terminal, target) is False

    def test_provisioning_unreachable(self):
        """No state leads back to provisioning."""
        assert transition_sources(ProvisioningStatus.PROVISIONING) == frozenset()
        assert set(PROVISIONING_TRANSITIONS) == set(ProvisioningStatus)


class TestGuardedWrites:
    """Guarded store writes applied in any order never move a service backwards."""

    @fixture_settings
    @given(targets=st.lists(statuses, min_size=1, max_size=12))
    def test_random_advance_sequence(self, store, user_id, targets):
        service = store.add_service(user_id)

        async def run():
            history = [ProvisioningStatus.PROVISIONING]
            for target in targets:
                before = store.service(service.service_id).provisioning_status
                applied = await store.advance_provisioning(
                    store.service(service.service_id), target, credentials=CREDENTIALS
                )
                after = store.service(service.service_id).provisioning_status
                assert applied == can_transition(before, target)
                assert after == (target if applied else before)
                history.append(after)
            return history

        history = asyncio.run(run())

        for before, after in zip(history, history[1:], strict=False):
            assert before == after or can_transition(before, after)
        first_terminal = next((i for i, s in enumerate(history) if s in TERMINAL), None)
        if first_terminal is not None:
            assert len(set(history[first_terminal:])) == 1

    @fixture_settings
    @given(targets=st.lists(statuses, min_size=1, max_size=6))
    def test_forced_termination_is_final(self, store, user_id, targets):
        service = store.add_service(user_id)

        async def run():
            await store.advance_provisioning(
                service, ProvisioningStatus.TERMINATED, force=True
            )
            for target in targets:
                await store.advance_provisioning(
                    store.service(service.service_id), target, credentials=CREDENTIALS
                )

        asyncio.run(run())

        assert store.service(service.service_id).provisioning_status == (
            ProvisioningStatus.TERMINATED
        )


# ============================================================================
# Idempotent Provisioning
# ============================================================================


class TestProvisioningConvergence:
    """Concurrent provisioning calls for one subscription converge."""

    @fixture_settings
    @given(callers=st.integers(min_value=1, max_value=8))
    def test_one_service_one_kept_instance(self, store, provider, orchestrator, user_id, callers):
        subscription_id = f"sub_{uuid4().hex[:12]}"
        created_before = len(provider.created)
        deleted_before = len(provider.deleted)
        request = ProvisioningRequest(
            user_id=user_id,
            billing_subscription_id=subscription_id,
            plan_id="basic",
            billing_cycle=BillingCycle.MONTHLY,
            location="london",
            period_start=datetime(2026, 10, 1, tzinfo=UTC),
            period_end=datetime(2026, 11, 1, tzinfo=UTC),
        )

        async def run():
            return await asyncio.gather(
                *(orchestrator.provision(request) for _ in range(callers))
            )

        outcomes = asyncio.run(run())

        matching = [
            s for s in store.services_of(user_id) if s.billing_subscription_id == subscription_id
        ]
        assert len(matching) == 1
        assert {outcome.service.service_id for outcome in outcomes} == {matching[0].service_id}
        assert sum(1 for outcome in outcomes if outcome.created) == 1
        created = len(provider.created) - created_before
        deleted = len(provider.deleted) - deleted_before
        assert created - deleted == 1


# ============================================================================
# Naming Helpers
# ============================================================================


class TestLabelProperties:
    """Instance labels and hostnames."""

    @given(first=names, last=names, now=st.integers(min_value=0, max_value=2**33))
    def test_label_is_slug(self, first, last, now):
        user = UserAggregate(
            user_id=uuid4(),
            email="user@example.com",
            first_name=first,
            last_name=last,
            role=UserRole.USER,
            customer_ref=None,
            services=(),
            legacy=None,
        )

        label = build_label(user, now=now)

        assert re.fullmatch(r"vps-[a-z0-9-]+-\d+", label)
        assert label.endswith(f"-{now}")

    @given(label=st.text(max_size=200))
    def test_hostname_is_provider_safe(self, label):
        hostname = sanitize_hostname(label)

        assert len(hostname) <= MAX_HOSTNAME_LENGTH
        assert re.fullmatch(r"[a-zA-Z0-9-]*", hostname)

    @given(label=st.from_regex(r"[a-z0-9-]{1,50}", fullmatch=True))
    def test_safe_labels_unchanged(self, label):
        assert sanitize_hostname(label) == label


class TestAddMonthsProperties:
    """Calendar month arithmetic."""

    @given(
        moment=st.datetimes(
            min_value=datetime(2000, 1, 1), max_value=datetime(2090, 12, 31)
        ),
        months=st.integers(min_value=0, max_value=36),
    )
    def test_lands_in_target_month(self, moment, months):
        result = add_months(moment, months)

        assert (result.year * 12 + result.month) - (moment.year * 12 + moment.month) == months
        assert result.day <= moment.day
        assert result.time() == moment.time()

    @given(cycle=st.sampled_from(list(BillingCycle)))
    def test_cycle_lengths(self, cycle):
        start = datetime(2026, 1, 31, tzinfo=UTC)
        months = 12 if cycle == BillingCycle.YEARLY else 1
        assert add_months(start, months) > start
