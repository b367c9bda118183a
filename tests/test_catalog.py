import random
import unittest
from datetime import datetime, timedelta, timezone

from ruibot.catalog import (
    BOOST_DURATION,
    Catalog,
    buy_boost,
    buy_card,
    create_card,
    gift_card,
    open_pack,
    parse_card_id,
    validate_card_id,
)
from ruibot.errors import (
    CatalogUnavailableError,
    InsufficientFundsError,
    NotAuthorizedError,
    ValidationError,
)
from ruibot.models import CardDef, UserRecord

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
STAFF = frozenset({"900"})


def _catalog():
    return Catalog(
        [
            CardDef(id="CLNHRV101", group="Luna", member="Haru", rarity="common"),
            CardDef(id="RLNHRV101", group="Luna", member="Haru", rarity="rare"),
            CardDef(id="LLNHRV101", group="Luna", member="Haru", rarity="legendary", droppable=False),
            CardDef(id="ESLNHRV101", group="Luna", member="Haru", rarity="event", type="event"),
        ]
    )


def _user(coins=0, butterflies=0):
    return UserRecord(user_id="42", name="Mina", created_at=NOW, coins=coins, butterflies=butterflies)


class CardIdTests(unittest.TestCase):
    def test_parse_valid_ids(self) -> None:
        parts = parse_card_id("CXLRUV101")
        self.assertEqual((parts.rarity, parts.group, parts.idol, parts.version, parts.episode), ("common", "XL", "RU", 1, 1))
        parts = parse_card_id("esxlruv1205")
        self.assertEqual((parts.rarity, parts.version, parts.episode), ("event", 12, 5))

    def test_rejects_malformed_ids(self) -> None:
        for card_id in ("CXLRUV1", "XXLRUV101", "CXLRUV100", "CXLRU101", ""):
            with self.assertRaises(ValidationError, msg=card_id):
                parse_card_id(card_id)

    def test_rarity_must_match_prefix(self) -> None:
        validate_card_id("RXLRUV101", "rare")
        with self.assertRaises(ValidationError):
            validate_card_id("RXLRUV101", "common")


class CatalogTests(unittest.TestCase):
    def test_lookup_is_case_insensitive_and_dedupes(self) -> None:
        catalog = Catalog(
            [
                CardDef(id="CLNHRV101", group="Luna", member="Haru"),
                CardDef(id="clnhrv101", group="Other", member="Copy"),
            ]
        )
        self.assertEqual(len(catalog), 1)
        self.assertEqual(catalog.get(" clnhrv101 ").group, "Luna")

    def test_standard_pool_excludes_event_and_non_droppable(self) -> None:
        ids = {card.id for card in _catalog().standard_pool()}
        self.assertEqual(ids, {"CLNHRV101", "RLNHRV101"})


class BuyTests(unittest.TestCase):
    def test_buy_card_charges_rarity_price(self) -> None:
        user, inventory = _user(coins=500), []
        card = buy_card(user, inventory, _catalog(), "clnhrv101")
        self.assertEqual(card.id, "CLNHRV101")
        self.assertEqual(user.coins, 300)
        self.assertEqual(inventory, [card])

    def test_buy_with_insufficient_funds_changes_nothing(self) -> None:
        user, inventory = _user(coins=100), []
        with self.assertRaises(InsufficientFundsError):
            buy_card(user, inventory, _catalog(), "RLNHRV101")
        self.assertEqual(user.coins, 100)
        self.assertEqual(inventory, [])

    def test_event_cards_are_not_buyable(self) -> None:
        user, inventory = _user(coins=5000), []
        with self.assertRaises(ValidationError):
            buy_card(user, inventory, _catalog(), "ESLNHRV101")
        self.assertEqual(user.coins, 5000)

    def test_unknown_card(self) -> None:
        with self.assertRaises(ValidationError):
            buy_card(_user(coins=5000), [], _catalog(), "CZZZZV101")

    def test_pack_draws_only_standard_cards(self) -> None:
        user, inventory = _user(coins=700), []
        won = open_pack(user, inventory, _catalog(), "medium", rng=random.Random(3))
        self.assertEqual(len(won), 10)
        self.assertEqual(user.coins, 50)
        self.assertEqual(inventory, won)
        self.assertTrue({card.id for card in won} <= {"CLNHRV101", "RLNHRV101"})

    def test_pack_errors(self) -> None:
        with self.assertRaises(ValidationError):
            open_pack(_user(coins=5000), [], _catalog(), "huge")
        with self.assertRaises(InsufficientFundsError):
            open_pack(_user(coins=100), [], _catalog(), "small")
        user = _user(coins=5000)
        event_only = Catalog([CardDef(id="ESLNHRV101", group="Luna", member="Haru", rarity="event")])
        with self.assertRaises(CatalogUnavailableError):
            open_pack(user, [], event_only, "big")
        self.assertEqual(user.coins, 5000)

    def test_boost_purchase_overwrites_previous_boost(self) -> None:
        user = _user(butterflies=100)
        boost = buy_boost(user, "small", now=NOW)
        self.assertEqual(user.butterflies, 75)
        self.assertEqual(boost.expires_at, NOW + BOOST_DURATION)

        later = NOW + timedelta(minutes=10)
        buy_boost(user, "Mega", now=later)
        self.assertEqual(user.butterflies, 15)
        self.assertEqual(user.active_boost.tier, "mega")
        self.assertEqual(user.active_boost.expires_at, later + BOOST_DURATION)

        with self.assertRaises(InsufficientFundsError):
            buy_boost(user, "normal", now=later)
        with self.assertRaises(ValidationError):
            buy_boost(user, "ultra", now=later)


class GiftCardTests(unittest.TestCase):
    def test_moves_first_instance(self) -> None:
        card = CardDef(id="CLNHRV101", group="Luna", member="Haru")
        sender, receiver = [card, card], []
        moved = gift_card(sender, receiver, "clnhrv101")
        self.assertEqual(moved, card)
        self.assertEqual((len(sender), len(receiver)), (1, 1))

    def test_missing_card(self) -> None:
        sender, receiver = [], []
        with self.assertRaises(ValidationError):
            gift_card(sender, receiver, "CLNHRV101")
        with self.assertRaises(ValidationError):
            gift_card(sender, receiver, None)


class CreateCardTests(unittest.TestCase):
    def _create(self, catalog, **overrides):
        kwargs = dict(
            actor_id="900",
            staff_ids=STAFF,
            card_id="sxlruv101",
            rarity="super_rare",
            group="Luna",
            idol="Rui",
            card_type="regular",
        )
        kwargs.update(overrides)
        return create_card(catalog, **kwargs)

    def test_staff_can_add_cards(self) -> None:
        catalog = Catalog()
        card = self._create(catalog)
        self.assertEqual(card.id, "SXLRUV101")
        self.assertEqual(card.type, "reg")
        self.assertIs(catalog.get("SXLRUV101"), card)

    def test_non_staff_is_rejected(self) -> None:
        catalog = Catalog()
        with self.assertRaises(NotAuthorizedError):
            self._create(catalog, actor_id="1")
        self.assertEqual(len(catalog), 0)

    def test_duplicate_and_mismatched_ids(self) -> None:
        catalog = Catalog()
        self._create(catalog)
        with self.assertRaises(ValidationError):
            self._create(catalog)
        with self.assertRaises(ValidationError):
            self._create(catalog, card_id="CXLRUV102")

    def test_id_format_can_be_relaxed(self) -> None:
        card = self._create(Catalog(), card_id="promo-1", enforce_id_format=False)
        self.assertEqual(card.id, "PROMO-1")


if __name__ == "__main__":
    unittest.main()
