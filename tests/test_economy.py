import asyncio
import dataclasses
import json
import random
import tempfile
import unittest
from datetime import datetime, timedelta, timezone
from pathlib import Path

from ruibot.config import EconomyRules
from ruibot.cooldowns import DEFAULT_COOLDOWNS, CooldownRule
from ruibot.economy import GENERIC_FAILURE, WORK_MESSAGES, EconomyManager
from ruibot.errors import StoreError
from ruibot.models import CardDef, UserRecord, serialize_card, serialize_user
from ruibot.store import JsonFileStore, MemoryStore

START = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

CARDS = [
    CardDef(id="CLNHRV101", group="Luna", member="Haru", rarity="common", image="https://img.example/c1.png"),
    CardDef(id="CLNMIV101", group="Luna", member="Mina", rarity="common"),
    CardDef(id="RLNHRV101", group="Luna", member="Haru", rarity="rare"),
    CardDef(id="SLNHRV101", group="Luna", member="Haru", rarity="super_rare"),
    CardDef(id="ULNHRV101", group="Luna", member="Haru", rarity="ultra_rare"),
    CardDef(id="LLNHRV101", group="Luna", member="Haru", rarity="legendary"),
    CardDef(id="ESLNHRV101", group="Luna", member="Haru", rarity="event", type="event"),
]


class FakeClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class BrokenStore(MemoryStore):
    def __init__(self, error: Exception) -> None:
        super().__init__()
        self.error = error

    async def load(self, collection):
        raise self.error


def _user_doc(user_id, coins=0, butterflies=0):
    record = UserRecord(user_id=user_id, name=f"user{user_id}", created_at=START, coins=coins, butterflies=butterflies)
    return serialize_user(record)


class EconomyManagerTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.clock = FakeClock(START)
        self.store = MemoryStore({"cards": [serialize_card(card) for card in CARDS]})
        self.manager = self._manager(self.store)

    def _manager(self, store):
        return EconomyManager(
            store=store,
            staff_ids={"900"},
            rng=random.Random(42),
            clock=self.clock,
        )

    async def _seed_users(self, **balances) -> None:
        users = await self.store.load("users")
        for user_id, coins in balances.items():
            users[user_id] = _user_doc(user_id, coins=coins, butterflies=coins)
        await self.store.save("users", users)

    async def _stored_user(self, user_id):
        return (await self.store.load("users"))[user_id]

    async def _inventory_ids(self, user_id):
        return [entry["id"] for entry in (await self.store.load("user_cards")).get(user_id, [])]

    async def test_ping(self) -> None:
        result = await self.manager.dispatch("ping")
        self.assertEqual((result.title, result.description), ("Pong", "Rui is awake."))

    async def test_start_creates_profile_once(self) -> None:
        result = await self.manager.dispatch("start", user_id="1", name="Mina")
        self.assertFalse(result.is_error)
        self.assertEqual((await self._stored_user("1"))["coins"], 0)

        again = await self.manager.dispatch("start", user_id="1", name="Mina")
        self.assertTrue(again.is_error)
        self.assertTrue(again.ephemeral)
        self.assertEqual(again.title, "Profile already exists")

    async def test_start_after_auto_created_record_reports_existing(self) -> None:
        await self.manager.dispatch("balance", user_id="1", name="Mina")
        result = await self.manager.dispatch("start", user_id="1", name="Mina")
        self.assertEqual(result.title, "Profile already exists")

    async def test_balance_shows_totals_and_boost(self) -> None:
        await self._seed_users(**{"1": 120})
        result = await self.manager.dispatch("balance", user_id="1", name="Mina")
        values = {field.name: field.value for field in result.fields}
        self.assertEqual(values["🪙 Coins"], "120")
        self.assertEqual(values["🦋 Butterflies"], "120")
        self.assertEqual(values["✨ Cards"], "0")
        self.assertEqual(values["Boost"], "none")

    async def test_daily_scenario(self) -> None:
        first = await self.manager.dispatch("daily", user_id="1", name="Mina")
        self.assertFalse(first.is_error)
        stored = await self._stored_user("1")
        self.assertTrue(200 <= stored["coins"] <= 750)
        self.assertTrue(3 <= stored["butterflies"] <= 20)

        second = await self.manager.dispatch("daily", user_id="1", name="Mina")
        self.assertTrue(second.is_error)
        self.assertIn("about **24** hours", second.description)
        self.assertEqual(await self._stored_user("1"), stored)

        self.clock.advance(hours=23, minutes=30)
        third = await self.manager.dispatch("daily", user_id="1", name="Mina")
        self.assertIn("about **1** hours", third.description)

        self.clock.advance(minutes=30)
        fourth = await self.manager.dispatch("daily", user_id="1", name="Mina")
        self.assertFalse(fourth.is_error)
        self.assertGreater((await self._stored_user("1"))["coins"], stored["coins"])

    async def test_work_uses_flavor_message(self) -> None:
        result = await self.manager.dispatch("work", user_id="1", name="Mina")
        self.assertTrue(any(result.description.startswith(message) for message in WORK_MESSAGES))
        self.clock.advance(minutes=10)
        blocked = await self.manager.dispatch("work", user_id="1", name="Mina")
        self.assertIn("about **5** minutes", blocked.description)

    async def test_buy_with_insufficient_funds(self) -> None:
        await self._seed_users(**{"1": 150})
        result = await self.manager.dispatch("buy", user_id="1", name="Mina", card_id="RLNHRV101")
        self.assertTrue(result.is_error)
        self.assertEqual(result.title, "Not enough coins")
        self.assertEqual((await self._stored_user("1"))["coins"], 150)
        self.assertEqual(await self._inventory_ids("1"), [])

    async def test_buy_card(self) -> None:
        await self._seed_users(**{"1": 500})
        result = await self.manager.dispatch("buy", user_id="1", name="Mina", card_id="clnhrv101")
        self.assertFalse(result.is_error)
        self.assertEqual(result.image_url, "https://img.example/c1.png")
        self.assertEqual((await self._stored_user("1"))["coins"], 300)
        self.assertEqual(await self._inventory_ids("1"), ["CLNHRV101"])

    async def test_drop_then_pick(self) -> None:
        drop = await self.manager.dispatch("drop", user_id="1", name="Mina")
        self.assertFalse(drop.is_error)
        self.assertEqual(len(drop.offer), 3)
        self.assertTrue(drop.ephemeral)

        again = await self.manager.dispatch("drop", user_id="1", name="Mina")
        self.assertEqual([card.id for card in again.offer], [card.id for card in drop.offer])

        self.clock.advance(seconds=20)
        pick = await self.manager.dispatch("pick", user_id="1", name="Mina", index=1)
        self.assertFalse(pick.is_error)
        self.assertEqual(await self._inventory_ids("1"), [drop.offer[1].id])
        stored = await self._stored_user("1")
        self.assertIsNone(stored["pendingDrop"])
        self.assertIsNotNone(stored["lastDrop"])

        twice = await self.manager.dispatch("pick", user_id="1", name="Mina", index=1)
        self.assertEqual(twice.title, "No active drop")

        blocked = await self.manager.dispatch("drop", user_id="1", name="Mina")
        self.assertEqual(blocked.title, "Drop not ready")

    async def test_expired_drop_cannot_be_picked(self) -> None:
        await self.manager.dispatch("drop", user_id="1", name="Mina")
        self.clock.advance(seconds=61)
        result = await self.manager.dispatch("pick", user_id="1", name="Mina", index=0)
        self.assertEqual(result.title, "Drop expired")
        self.assertIsNone((await self._stored_user("1"))["pendingDrop"])
        self.assertEqual(await self._inventory_ids("1"), [])

    async def test_drop_shows_active_boost(self) -> None:
        await self._seed_users(**{"1": 100})
        boost = await self.manager.dispatch("buyboost", user_id="1", name="Mina", tier="normal")
        self.assertFalse(boost.is_error)
        self.assertEqual((await self._stored_user("1"))["butterflies"], 60)
        drop = await self.manager.dispatch("drop", user_id="1", name="Mina")
        self.assertEqual(drop.title, "Drop (boost: normal)")

    async def test_drop_with_empty_catalog(self) -> None:
        manager = self._manager(MemoryStore())
        result = await manager.dispatch("drop", user_id="1", name="Mina")
        self.assertEqual(result.title, "No cards available")

    async def test_claim_draws_standard_card_and_starts_cooldown(self) -> None:
        result = await self.manager.dispatch("claim", user_id="1", name="Mina")
        self.assertFalse(result.is_error)
        owned = await self._inventory_ids("1")
        self.assertEqual(len(owned), 1)
        self.assertNotEqual(owned[0], "ESLNHRV101")

        blocked = await self.manager.dispatch("claim", user_id="1", name="Mina")
        self.assertIn("seconds", blocked.description)
        self.clock.advance(seconds=90)
        self.assertFalse((await self.manager.dispatch("claim", user_id="1", name="Mina")).is_error)

    async def test_buypack_and_inventory(self) -> None:
        await self._seed_users(**{"1": 1200})
        pack = await self.manager.dispatch("buypack", user_id="1", name="Mina", size="big")
        self.assertFalse(pack.is_error)
        self.assertEqual((await self._stored_user("1"))["coins"], 100)
        self.assertEqual(len(await self._inventory_ids("1")), 20)

        inventory = await self.manager.dispatch("inventory", user_id="1", name="Mina")
        self.assertIn("**20**", inventory.description)
        self.assertEqual(len(inventory.fields), 10)

    async def test_gift_coins_creates_receiver(self) -> None:
        await self._seed_users(**{"1": 500})
        result = await self.manager.dispatch(
            "gift", user_id="1", name="Mina", target_id="2", target_name="Haru", what="coins", amount=200
        )
        self.assertFalse(result.is_error)
        self.assertEqual((await self._stored_user("1"))["coins"], 300)
        self.assertEqual((await self._stored_user("2"))["coins"], 200)

    async def test_gift_rejections(self) -> None:
        await self._seed_users(**{"1": 50})
        self_gift = await self.manager.dispatch(
            "gift", user_id="1", name="Mina", target_id="1", target_name="Mina", what="coins", amount=10
        )
        self.assertTrue(self_gift.is_error)
        too_much = await self.manager.dispatch(
            "gift", user_id="1", name="Mina", target_id="2", target_name="Haru", what="coins", amount=80
        )
        self.assertEqual(too_much.title, "Not enough coins")
        unknown = await self.manager.dispatch(
            "gift", user_id="1", name="Mina", target_id="2", target_name="Haru", what="hugs", amount=1
        )
        self.assertTrue(unknown.is_error)
        self.assertEqual((await self._stored_user("1"))["coins"], 50)

    async def test_gift_card(self) -> None:
        await self._seed_users(**{"1": 500})
        await self.manager.dispatch("buy", user_id="1", name="Mina", card_id="CLNHRV101")
        result = await self.manager.dispatch(
            "gift", user_id="1", name="Mina", target_id="2", target_name="Haru", what="card", card_id="clnhrv101"
        )
        self.assertFalse(result.is_error)
        self.assertEqual(await self._inventory_ids("1"), [])
        self.assertEqual(await self._inventory_ids("2"), ["CLNHRV101"])
        self.assertIn("2", await self.store.load("users"))

    async def test_concurrent_gifts_conserve_totals(self) -> None:
        await self._seed_users(**{"1": 100, "2": 100})
        calls = []
        for index in range(20):
            sender, receiver = ("1", "2") if index % 2 else ("2", "1")
            calls.append(
                self.manager.dispatch(
                    "gift", user_id=sender, name=sender, target_id=receiver, target_name=receiver, what="coins", amount=7
                )
            )
        results = await asyncio.gather(*calls)
        self.assertFalse(any(result.is_error for result in results))
        users = await self.store.load("users")
        self.assertEqual(users["1"]["coins"] + users["2"]["coins"], 200)
        self.assertEqual(users["1"]["coins"], 100)

    async def test_addcard_requires_staff(self) -> None:
        kwargs = dict(card_id="CXLRUV101", rarity="common", group="XL", idol="Rui", card_type="reg")
        denied = await self.manager.dispatch("addcard", user_id="1", **kwargs)
        self.assertEqual(denied.title, "Not allowed")

        created = await self.manager.dispatch("addcard", user_id="900", **kwargs)
        self.assertFalse(created.is_error)
        ids = [entry["id"] for entry in await self.store.load("cards")]
        self.assertIn("CXLRUV101", ids)

        duplicate = await self.manager.dispatch("addcard", user_id="900", **kwargs)
        self.assertEqual(duplicate.title, "Already exists")

    async def test_overview_lists_commands(self) -> None:
        result = await self.manager.dispatch("overview")
        names = " ".join(field.name for field in result.fields)
        for command in ("/drop", "/claim", "/gift", "/buypack"):
            self.assertIn(command, names)

    async def test_overview_follows_configured_rules(self) -> None:
        rules = dataclasses.replace(
            EconomyRules(),
            cooldowns={**DEFAULT_COOLDOWNS, "work": CooldownRule("work", timedelta(minutes=10), "minutes")},
            pack_sizes={"small": 3, "medium": 6, "big": 12},
            boost_duration=timedelta(minutes=30),
            drop_size=4,
        )
        manager = EconomyManager(store=self.store, rules=rules, rng=random.Random(1), clock=self.clock)
        values = {field.name: field.value for field in (await manager.dispatch("overview")).fields}
        self.assertIn("10min cooldown", values["/work"])
        self.assertTrue(values["/drop"].startswith("Drop 4 random cards"))
        self.assertIn("1min cooldown", values["/drop"])
        self.assertEqual(values["/claim"], "Claim 1 random card every 90s")
        self.assertIn("30min", values["/buyboost"])
        self.assertIn("3 / 6 / 12", values["/buypack"])

    async def test_unknown_command(self) -> None:
        result = await self.manager.dispatch("dance")
        self.assertTrue(result.is_error)

    async def test_damaged_users_file_is_not_overwritten(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            store = JsonFileStore(Path(tmp))
            users = {"1": _user_doc("1", coins=5000), "2": _user_doc("2", coins=9000)}
            damaged = json.dumps(users)[:-5]
            store.path_for("users").write_text(damaged, encoding="utf-8")
            manager = self._manager(store)

            with self.assertLogs("ruibot", level="ERROR"):
                result = await manager.dispatch("balance", user_id="3", name="Noa")
            self.assertTrue(result.is_error)
            self.assertEqual(result.description, GENERIC_FAILURE)
            self.assertEqual(store.path_for("users").read_text(encoding="utf-8"), damaged)

            store.path_for("users").write_text(json.dumps(users), encoding="utf-8")
            await manager.dispatch("balance", user_id="3", name="Noa")
            stored = await store.load("users")
            self.assertEqual(sorted(stored), ["1", "2", "3"])
            self.assertEqual(stored["2"]["coins"], 9000)

    async def test_store_failure_returns_generic_error(self) -> None:
        manager = self._manager(BrokenStore(StoreError("disk gone")))
        with self.assertLogs("ruibot.economy", level="ERROR"):
            result = await manager.dispatch("balance", user_id="1", name="Mina")
        self.assertTrue(result.is_error)
        self.assertEqual(result.description, GENERIC_FAILURE)

    async def test_unexpected_failure_is_logged(self) -> None:
        manager = self._manager(BrokenStore(RuntimeError("boom")))
        with self.assertLogs("ruibot.economy", level="ERROR") as captured:
            result = await manager.dispatch("daily", user_id="1", name="Mina")
        self.assertTrue(result.is_error)
        self.assertTrue(any("boom" in line for line in captured.output))


if __name__ == "__main__":
    unittest.main()
