import pytest

from app.core.errors import InvalidMsisdn
from app.utils.msisdn import is_normalized_msisdn, mask_msisdn, normalize_msisdn


class TestNormalize:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("+49 170 1234567", "491701234567"),
            ("0049 170 1234567", "491701234567"),
            ("0170-1234567", "491701234567"),
            ("436763602302", "436763602302"),
            ("(+357) 99 123456", "35799123456"),
        ],
    )
    def test_formats(self, raw, expected):
        assert normalize_msisdn(raw) == expected

    def test_explicit_country_code(self):
        assert normalize_msisdn("0664 1234567", default_country_code="43") == "436641234567"

    @pytest.mark.parametrize("raw", [None, "", "12345", "+1234567890123456", "abc", "+0123456789"])
    def test_rejects_invalid(self, raw):
        with pytest.raises(InvalidMsisdn):
            normalize_msisdn(raw)


@pytest.mark.parametrize(
    "raw",
    [
        "+\u0664\u0669\u0661\u0667\u0660\u0661\u0662\u0663\u0664\u0665\u0666\u0667",  # Arabic-Indic digits
        "+49 170 123\u0664\u0665\u0666\u0667",
        "+49170\uff11\uff12\uff13\uff14\uff15\uff16\uff17",  # fullwidth digits
    ],
)
def test_rejects_non_ascii_digits(raw):
    with pytest.raises(InvalidMsisdn):
        normalize_msisdn(raw)


def test_is_normalized_msisdn():
    assert is_normalized_msisdn("491701234567")
    assert not is_normalized_msisdn("+491701234567")
    assert not is_normalized_msisdn("0170123456")
    assert not is_normalized_msisdn("1234")
    assert not is_normalized_msisdn(None)
    assert not is_normalized_msisdn("491701234567\n")
    assert not is_normalized_msisdn("\u0664\u0669\u0661\u0667\u0660\u0661\u0662\u0663\u0664\u0665\u0666\u0667")


def test_mask_msisdn_hides_middle():
    masked = mask_msisdn("491701234567")
    assert masked.startswith("4917")
    assert masked.endswith("567")
    assert "01234" not in masked
    assert mask_msisdn(None) == ""
