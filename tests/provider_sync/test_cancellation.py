# === NAVMAP v1 ===
# {
#   "module": "tests.provider_sync.test_cancellation",
#   "purpose": "Tests for the cancellation primitives shared by download workers.",
#   "sections": [
#     {"id": "tests", "name": "Test Cases", "anchor": "TST", "kind": "tests"}
#   ]
# }
# === /NAVMAP ===

"""Tests for the cancellation primitives shared by download workers."""

from TerraMirror.ProviderSync.cancellation import CancellationTokenGroup


def test_tokens_created_after_cancel_all_are_cancelled() -> None:
    """Tokens created after ``cancel_all`` should start in a cancelled state."""

    group = CancellationTokenGroup()
    first = group.create_token()
    assert not first.is_cancelled()

    group.cancel_all()

    assert first.is_cancelled()
    assert group.cancelled
    assert group.create_token().is_cancelled()


def test_removed_tokens_are_not_cancelled() -> None:
    group = CancellationTokenGroup()
    kept = group.create_token()
    removed = group.create_token()
    group.remove_token(removed)
    group.remove_token(removed)

    group.cancel_all()

    assert kept.is_cancelled()
    assert not removed.is_cancelled()
    assert len(group) == 1
