from __future__ import annotations

import logging
from typing import Any

from habitquest.db import Database
from habitquest.db_models import EquipmentItem, PurchaseStatus
from habitquest.errors import InvalidInput, NotFound
from habitquest.skill_effects import SKILL_TREE
from habitquest.time_utils import Clock, now_utc

logger = logging.getLogger(__name__)

EQUIP_ACTIONS = ("equip", "unequip")


def _item_dict(item: EquipmentItem) -> dict[str, Any]:
    return {
        "id": item.id,
        "name": item.name,
        "type": item.slot,
        "rarity": item.rarity,
        "gold_price": item.gold_cost,
        "xp_multiplier": item.xp_multiplier,
    }


def _require_id(value: Any, message: str, field: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise InvalidInput(message, details={"field": field})
    return value


class ShopService:
    """Spends gold on equipment and skill points on skills."""

    def __init__(self, db: Database, clock: Clock = now_utc) -> None:
        self.db = db
        self.clock = clock

    def purchase_equipment(self, actor_id: str, item_id: Any) -> dict[str, Any]:
        item_id = _require_id(item_id, "Invalid equipment ID", "equipment_id")
        now = self.clock()
        profile = self.db.get_or_create_profile(actor_id, now)

        item = self.db.get_equipment(item_id)
        if item is None:
            raise NotFound("Equipment not found")
        if profile.level < item.level_required:
            raise InvalidInput(
                f"Requires level {item.level_required}",
                details={"level_required": item.level_required, "level": profile.level},
            )

        result = self.db.purchase_equipment(actor_id, item.id, item.gold_cost, now)
        if result.status is PurchaseStatus.ALREADY_OWNED:
            raise InvalidInput("Already owned", details={"new_balance": result.new_balance})
        if result.status is not PurchaseStatus.PURCHASED:
            logger.info(
                "Purchase rejected user_id=%s item_id=%s price=%s balance=%s",
                actor_id,
                item.id,
                item.gold_cost,
                result.new_balance,
            )
            raise InvalidInput("Insufficient gold", details={"new_balance": result.new_balance})

        logger.info(
            "Equipment purchased user_id=%s item_id=%s price=%s balance=%s",
            actor_id,
            item.id,
            item.gold_cost,
            result.new_balance,
        )
        return {
            "success": True,
            "message": "Purchase successful",
            "equipment": _item_dict(item),
            "new_balance": result.new_balance,
        }

    def equip(self, actor_id: str, item_id: Any, action: Any = "equip") -> dict[str, Any]:
        item_id = _require_id(item_id, "Invalid equipment ID", "equipment_id")
        if action not in EQUIP_ACTIONS:
            raise InvalidInput('Invalid action. Must be "equip" or "unequip"', details={"field": "action"})

        if not self.db.owns_equipment(actor_id, item_id):
            raise NotFound("Equipment not owned")
        item = self.db.get_equipment(item_id)
        if item is None:
            raise NotFound("Equipment not found")

        now = self.clock()
        if action == "equip":
            self.db.equip_item(actor_id, item.id, item.slot, now)
            message = f"Equipped {item.name}"
        else:
            profile = self.db.get_or_create_profile(actor_id, now)
            if any(equipped.id == item.id for equipped in profile.equipped_items):
                self.db.equip_item(actor_id, None, item.slot, now)
            message = f"Unequipped {item.name}"

        logger.info("Equipment %s user_id=%s item_id=%s slot=%s", action, actor_id, item.id, item.slot)
        return {"success": True, "message": message, "action": action}

    def unlock_skill(self, actor_id: str, skill_id: Any) -> dict[str, Any]:
        skill_id = _require_id(skill_id, "Invalid skill ID", "skill_id")
        if skill_id not in SKILL_TREE:
            raise NotFound("Skill not found")
        cost, requires = SKILL_TREE[skill_id]

        now = self.clock()
        profile = self.db.get_or_create_profile(actor_id, now)
        unlocked = set(self.db.list_unlocked_skills(actor_id))
        if skill_id in unlocked:
            raise InvalidInput("Skill already unlocked")
        missing = [req for req in requires if req not in unlocked]
        if missing:
            raise InvalidInput("Skill requirements not met", details={"requires": missing})
        if profile.skill_points < cost:
            raise InvalidInput("Not enough skill points", details={"skill_points": profile.skill_points, "cost": cost})

        # purchase_skill re-checks the balance under the write lock.
        if not self.db.purchase_skill(actor_id, skill_id, cost, now):
            raise InvalidInput("Not enough skill points", details={"cost": cost})

        logger.info("Skill unlocked user_id=%s skill_id=%s cost=%s", actor_id, skill_id, cost)
        return {
            "success": True,
            "skill_id": skill_id,
            "skill_points": self.db.get_or_create_profile(actor_id, now).skill_points,
        }
