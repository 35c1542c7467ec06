"""Property-based tests for renewal decisions and leader-only side effects."""

import json
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest
from hypothesis import given
from hypothesis import strategies as st

from swarm_manager.certificates import (
    days_until_expiry,
    generate_bundle,
    load_certificate,
    needs_renewal,
)
from swarm_manager.exceptions import LeadershipError
from swarm_manager.lock import HostLock
from swarm_manager.models.config import CertificateSettings
from swarm_manager.rotation import CertificateLifecycleManager, RotationOutcome
from swarm_manager.secret_store import SecretStore
from swarm_manager.status import StatusFile


@pytest.fixture(scope="module")
def workdir(tmp_path_factory):
    return tmp_path_factory.mktemp("certificate-properties")


@pytest.fixture(scope="module")
def bundle(workdir):
    return generate_bundle(workdir / "certs", "app.example.com", 90)


@given(
    elapsed_hours=st.integers(min_value=0, max_value=24 * 120),
    threshold=st.integers(min_value=0, max_value=90),
)
def test_renewal_matches_threshold(bundle, elapsed_hours, threshold):
    """Renewal is required exactly when whole days left <= threshold."""
    now = datetime.now(timezone.utc) + timedelta(hours=elapsed_hours)
    days_left = days_until_expiry(load_certificate(bundle.path("cert.pem")), now)

    reasons = needs_renewal(bundle.directory, threshold_days=threshold, now=now)

    assert bool(reasons) == (days_left <= threshold)


@given(
    node=st.sampled_from(
        [
            ("inactive", False, False),
            ("pending", False, False),
            ("error", False, False),
            ("locked", False, False),
            ("active", False, False),
            ("active", True, False),
        ]
    ),
    force=st.booleans(),
)
def test_only_the_leader_has_side_effects(make_runtime, make_secret_store, workdir, node, force):
    """Non-leaders never touch the secret store, swarm secrets or services."""
    local_state, control, leader = node
    runtime = make_runtime(local_node_state=local_state, control_available=control, is_leader=leader)
    secret_store = make_secret_store({"OTHER_KEY": "keep-me"})
    settings = CertificateSettings(validity_days=45, cert_dir=workdir / "never-written")
    manager = CertificateLifecycleManager(
        runtime,
        secret_store,
        settings,
        StatusFile(workdir / "gate.status"),
        HostLock(workdir / "gate.lock"),
    )

    try:
        outcome = manager.run(force=force)
    except LeadershipError:
        outcome = None

    if (local_state, control) == ("active", True):
        assert outcome == RotationOutcome.NOT_LEADER
    else:
        assert outcome is None
    assert secret_store.writes == []
    assert runtime.calls == [("node_state",)]
    assert not settings.cert_dir.exists()


keys = st.text(alphabet=st.characters(min_codepoint=33, max_codepoint=126), min_size=1, max_size=20)


@given(
    document=st.dictionaries(keys, st.text(max_size=30), max_size=8),
    value=st.text(min_size=1, max_size=40),
)
def test_merge_preserves_other_keys(document, value):
    """Only the password key changes; every other key survives verbatim."""
    client = MagicMock()
    client.get_secret_value.return_value = {"SecretString": json.dumps(document)}
    store = SecretStore("prod/app", "us-east-1", client=client)

    merged = store.merge_key("Infrastructure_CERTIFICATE_PASSWORD", value)

    written = json.loads(client.put_secret_value.call_args.kwargs["SecretString"])
    assert written == merged
    assert merged["Infrastructure_CERTIFICATE_PASSWORD"] == value
    for key, original in document.items():
        if key != "Infrastructure_CERTIFICATE_PASSWORD":
            assert merged[key] == original
    assert set(merged) == set(document) | {"Infrastructure_CERTIFICATE_PASSWORD"}
