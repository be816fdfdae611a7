"""
Unit tests for decide_access: pure logic, no database.
"""
import unittest

from app.network.models import NetworkType
from app.paywall.access import decide_access
from app.paywall.models import AccessContext, AccessReason, CallToAction


def _ctx(**kwargs):
    base = {
        "article_id": "a1",
        "publicly_readable": True,
        "bypass_granted": False,
        "msisdn": None,
        "network_type": NetworkType.MOBILE,
        "is_unlocked": False,
    }
    base.update(kwargs)
    return AccessContext(**base)


class TestDecideAccess(unittest.TestCase):
    """Ordering of the rules and the call to action."""

    def test_not_published_denies_regardless(self):
        decision = decide_access(_ctx(publicly_readable=False, bypass_granted=True, msisdn="491701234567", is_unlocked=True))
        self.assertFalse(decision.allowed)
        self.assertEqual(decision.reason, AccessReason.NOT_PUBLISHED)
        self.assertEqual(decision.cta, CallToAction.NONE)

    def test_bypass_allows_without_identity(self):
        decision = decide_access(_ctx(bypass_granted=True))
        self.assertTrue(decision.allowed)
        self.assertEqual(decision.reason, AccessReason.BYPASS)

    def test_unidentified_on_mobile_gets_identify(self):
        decision = decide_access(_ctx(network_type=NetworkType.MOBILE))
        self.assertFalse(decision.allowed)
        self.assertEqual(decision.reason, AccessReason.NEEDS_IDENTIFICATION)
        self.assertEqual(decision.cta, CallToAction.IDENTIFY)

    def test_unidentified_on_wifi_gets_switch_to_mobile(self):
        decision = decide_access(_ctx(network_type=NetworkType.WIFI))
        self.assertEqual(decision.cta, CallToAction.SWITCH_TO_MOBILE)

    def test_unidentified_on_unknown_gets_switch_to_mobile(self):
        decision = decide_access(_ctx(network_type=NetworkType.UNKNOWN))
        self.assertEqual(decision.cta, CallToAction.SWITCH_TO_MOBILE)

    def test_identified_and_unlocked(self):
        decision = decide_access(_ctx(msisdn="491701234567", is_unlocked=True))
        self.assertTrue(decision.allowed)
        self.assertEqual(decision.reason, AccessReason.UNLOCKED)
        self.assertEqual(decision.cta, CallToAction.NONE)

    def test_identified_not_unlocked_gets_pay(self):
        decision = decide_access(_ctx(msisdn="491701234567", network_type=NetworkType.WIFI))
        self.assertFalse(decision.allowed)
        self.assertEqual(decision.reason, AccessReason.NOT_UNLOCKED)
        self.assertEqual(decision.cta, CallToAction.PAY)

    def test_context_is_frozen(self):
        ctx = _ctx()
        with self.assertRaises(Exception):
            ctx.msisdn = "491701234567"


if __name__ == "__main__":
    unittest.main()
