"""
Tests for the rule calculator.

Tests:
- Stat bonus curve
- Skill-check modifiers per pool
- Damage multipliers and combat modifiers
- Vendor pricing
- Skill point accrual
"""

import pytest

from ..engine_core.combat import player_attack_damage
from ..engine_core.rules import (
    AttackKind,
    ability_modifier,
    buy_price,
    dodge_chance,
    liquidation_price,
    mitigate,
    round_half_up,
    sell_price,
    skill_check_modifier,
    skill_check_modifiers,
    skill_damage_multiplier,
    skill_points_earned,
    stat_bonus,
    weapon_damage,
)
from ..engine_core.state import Character, Equipment, Loadout, starting_stats


class TestStatBonus:
    """Tests for the stat bonus curve."""

    @pytest.mark.parametrize("value,bonus", [
        (-5, 0), (0, 0), (1, 1), (4, 1), (5, 2), (8, 2), (9, 4), (12, 4),
        (13, 8), (16, 8), (17, 16), (20, 16), (21, 20), (24, 20), (25, 24), (28, 24),
    ])
    def test_curve_values(self, value, bonus):
        assert stat_bonus(value) == bonus

    def test_non_decreasing(self):
        """The curve never goes down."""
        values = [stat_bonus(v) for v in range(-10, 80)]
        assert values == sorted(values)


class TestSkillCheckModifier:
    """Tests for the pool-based skill check modifier."""

    def test_combat_pool_uses_str_and_con(self, skill_pools):
        stats = {**starting_stats(), "STR": 16, "CON": 9}
        assert skill_check_modifier("Swordplay", stats, skill_pools) == 8 + 4

    def test_utility_pool_uses_cha_and_dex(self, skill_pools):
        stats = {**starting_stats(), "CHA": 14}
        assert skill_check_modifier("Lockpicking", stats, skill_pools) == 8 + 2

    def test_magic_pool_uses_int_and_wis(self, skill_pools):
        stats = {**starting_stats(), "INT": 20, "WIS": 1}
        assert skill_check_modifier("Fire Bolt", stats, skill_pools) == 16 + 1

    def test_unmatched_skill_has_no_modifier(self, skill_pools):
        assert skill_check_modifier("Juggling", starting_stats(), skill_pools) == 0

    def test_no_pools(self):
        assert skill_check_modifier("Swordplay", starting_stats(), None) == 0

    def test_modifiers_for_every_skill(self, skill_pools):
        modifiers = skill_check_modifiers({"Swordplay": 1, "Juggling": 2}, starting_stats(), skill_pools)
        assert modifiers == {"Swordplay": 4, "Juggling": 0}


class TestDamage:
    """Tests for skill multipliers and combat modifiers."""

    def test_table_levels(self):
        table = {1: 1.0, 2: 1.2, 3: 1.4, 4: 1.8, 5: 2.6, 6: 4.2}
        for level, expected in table.items():
            assert skill_damage_multiplier(level) == expected

    def test_increment_doubles_past_six(self):
        for level in range(7, 12):
            step = skill_damage_multiplier(level) - skill_damage_multiplier(level - 1)
            previous = skill_damage_multiplier(level - 1) - skill_damage_multiplier(level - 2)
            assert step == pytest.approx(2 * previous)

    def test_level_seven(self):
        assert skill_damage_multiplier(7) == pytest.approx(7.4)

    def test_untrained_counts_as_level_one(self):
        assert skill_damage_multiplier(0) == 1.0

    def test_ability_modifier(self):
        assert ability_modifier(16) == 4
        assert ability_modifier(8) == 0
        assert ability_modifier(7) == -1
        assert ability_modifier(3) == -3

    def test_round_half_up(self):
        assert round_half_up(2.5) == 3
        assert round_half_up(0.5) == 1
        assert round_half_up(2.4) == 2

    def test_weapon_damage(self):
        assert weapon_damage(10, 5) == 26
        assert weapon_damage(3, 2) == 4

    def test_strength_sixteen_sword_example(self):
        """STR 16, base 10 weapon, skill level 5: 26 scaled + 4 modifier."""
        character = Character(
            name="Arin",
            skills={"Swords": 5},
            stats={**starting_stats(), "STR": 16},
            equipment=Loadout(weapon=Equipment("Longsword", stats={"damage": 10})),
        )
        assert player_attack_damage(character, AttackKind.MELEE, 5) == 30

    def test_unarmed_damage(self):
        character = Character(name="Arin")
        assert player_attack_damage(character, AttackKind.MELEE, 1) == 1

    def test_damage_never_negative(self):
        character = Character(name="Arin", stats={**starting_stats(), "STR": 1})
        assert player_attack_damage(character, AttackKind.MELEE, 1) == 0

    def test_dodge_chance_capped(self):
        assert dodge_chance(8) == 12.0
        assert dodge_chance(40) == 50.0
        assert dodge_chance(-2) == 0.0

    def test_mitigate(self):
        assert mitigate(5, 2) == 3
        assert mitigate(1, 5) == 0
        assert mitigate(4, -3) == 4


class TestPricing:
    """Tests for charisma-adjusted vendor prices."""

    def test_charisma_fourteen_example(self):
        assert buy_price(100, 14) == 88
        assert sell_price(100, 14) == 62

    def test_base_charisma(self):
        assert buy_price(100, 8) == 100
        assert sell_price(100, 8) == 50

    def test_buy_rounds_up_sell_rounds_down(self):
        assert buy_price(15, 14) == 14
        assert sell_price(15, 14) == 9

    def test_buy_percent_floor(self):
        assert buy_price(100, 60) == 50

    def test_sell_price_never_negative(self):
        assert sell_price(100, -30) == 0

    def test_liquidation_is_half(self):
        assert liquidation_price(15) == 7
        assert liquidation_price(100) == 50


class TestSkillPoints:
    """Tests for XP boundary accrual."""

    def test_ninety_five_to_one_forty(self):
        assert skill_points_earned(95, 140) == 1

    def test_multiple_boundaries(self):
        assert skill_points_earned(0, 350) == 3

    def test_no_points_for_xp_loss(self):
        assert skill_points_earned(150, 120) == 0

    def test_matches_floor_difference(self):
        for a in range(0, 400, 37):
            for b in range(a, 600, 53):
                assert skill_points_earned(a, b) == b // 100 - a // 100
