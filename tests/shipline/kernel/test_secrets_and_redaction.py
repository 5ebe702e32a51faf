"""Tests for the Secret wrapper and log redaction."""

from shipline.kernel.types import Secret
from shipline.kernel.utils.redaction import MASK, redact


class TestSecret:
    def test_hides_value_in_str_and_repr(self) -> None:
        secret = Secret("s3cr3t")
        assert str(secret) == "<SECRET>"
        assert repr(secret) == "<SECRET>"
        assert "s3cr3t" not in f"{secret} {[secret]} {dict(k=secret)}"

    def test_get_unwraps(self) -> None:
        assert Secret("s3cr3t").get() == "s3cr3t"

    def test_equality_and_hash(self) -> None:
        assert Secret("a") == Secret("a")
        assert Secret("a") != Secret("b")
        assert len({Secret("a"), Secret("a")}) == 1


class TestRedact:
    def test_masks_every_occurrence(self) -> None:
        assert redact("pw=hunter2 again hunter2", {"hunter2"}) == f"pw={MASK} again {MASK}"

    def test_longest_value_first(self) -> None:
        assert redact("token abc123", {"abc", "abc123"}) == f"token {MASK}"

    def test_ignores_empty_values(self) -> None:
        assert redact("nothing to hide", {""}) == "nothing to hide"

    def test_no_secrets(self) -> None:
        assert redact("plain", frozenset()) == "plain"
