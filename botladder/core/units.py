"""
Unit and Event Codes

Published wire codes for unit types and unit events. Every member carries an
explicit, frozen integer; new members must take a new number and existing
numbers must never change, since dashboards decode the published artifact
with these values. Unit codes follow the BWAPI unit type ids.
"""

from enum import IntEnum


class UnitType(IntEnum):
    """Unit types tracked in game event traces."""

    # Terran units
    TERRAN_MARINE = 0
    TERRAN_GHOST = 1
    TERRAN_VULTURE = 2
    TERRAN_GOLIATH = 3
    TERRAN_SIEGE_TANK_TANK_MODE = 5
    TERRAN_SCV = 7
    TERRAN_WRAITH = 8
    TERRAN_SCIENCE_VESSEL = 9
    TERRAN_DROPSHIP = 11
    TERRAN_BATTLECRUISER = 12
    TERRAN_VULTURE_SPIDER_MINE = 13
    TERRAN_NUCLEAR_MISSILE = 14
    TERRAN_SIEGE_TANK_SIEGE_MODE = 30
    TERRAN_FIREBAT = 32
    TERRAN_MEDIC = 34
    TERRAN_VALKYRIE = 58

    # Zerg units
    ZERG_LARVA = 35
    ZERG_EGG = 36
    ZERG_ZERGLING = 37
    ZERG_HYDRALISK = 38
    ZERG_ULTRALISK = 39
    ZERG_BROODLING = 40
    ZERG_DRONE = 41
    ZERG_OVERLORD = 42
    ZERG_MUTALISK = 43
    ZERG_GUARDIAN = 44
    ZERG_QUEEN = 45
    ZERG_DEFILER = 46
    ZERG_SCOURGE = 47
    ZERG_INFESTED_TERRAN = 50
    ZERG_COCOON = 59
    ZERG_DEVOURER = 62
    ZERG_LURKER_EGG = 97
    ZERG_LURKER = 103

    # Protoss units
    PROTOSS_CORSAIR = 60
    PROTOSS_DARK_TEMPLAR = 61
    PROTOSS_DARK_ARCHON = 63
    PROTOSS_PROBE = 64
    PROTOSS_ZEALOT = 65
    PROTOSS_DRAGOON = 66
    PROTOSS_HIGH_TEMPLAR = 67
    PROTOSS_ARCHON = 68
    PROTOSS_SHUTTLE = 69
    PROTOSS_SCOUT = 70
    PROTOSS_ARBITER = 71
    PROTOSS_CARRIER = 72
    PROTOSS_INTERCEPTOR = 73
    PROTOSS_REAVER = 83
    PROTOSS_OBSERVER = 84
    PROTOSS_SCARAB = 85

    # Terran buildings
    TERRAN_COMMAND_CENTER = 106
    TERRAN_COMSAT_STATION = 107
    TERRAN_NUCLEAR_SILO = 108
    TERRAN_SUPPLY_DEPOT = 109
    TERRAN_REFINERY = 110
    TERRAN_BARRACKS = 111
    TERRAN_ACADEMY = 112
    TERRAN_FACTORY = 113
    TERRAN_STARPORT = 114
    TERRAN_CONTROL_TOWER = 115
    TERRAN_SCIENCE_FACILITY = 116
    TERRAN_COVERT_OPS = 117
    TERRAN_PHYSICS_LAB = 118
    TERRAN_MACHINE_SHOP = 120
    TERRAN_ENGINEERING_BAY = 122
    TERRAN_ARMORY = 123
    TERRAN_MISSILE_TURRET = 124
    TERRAN_BUNKER = 125

    # Zerg buildings
    ZERG_INFESTED_COMMAND_CENTER = 130
    ZERG_HATCHERY = 131
    ZERG_LAIR = 132
    ZERG_HIVE = 133
    ZERG_NYDUS_CANAL = 134
    ZERG_HYDRALISK_DEN = 135
    ZERG_DEFILER_MOUND = 136
    ZERG_GREATER_SPIRE = 137
    ZERG_QUEENS_NEST = 138
    ZERG_EVOLUTION_CHAMBER = 139
    ZERG_ULTRALISK_CAVERN = 140
    ZERG_SPIRE = 141
    ZERG_SPAWNING_POOL = 142
    ZERG_CREEP_COLONY = 143
    ZERG_SPORE_COLONY = 144
    ZERG_SUNKEN_COLONY = 146
    ZERG_EXTRACTOR = 149

    # Protoss buildings
    PROTOSS_NEXUS = 154
    PROTOSS_ROBOTICS_FACILITY = 155
    PROTOSS_PYLON = 156
    PROTOSS_ASSIMILATOR = 157
    PROTOSS_OBSERVATORY = 159
    PROTOSS_GATEWAY = 160
    PROTOSS_PHOTON_CANNON = 162
    PROTOSS_CITADEL_OF_ADUN = 163
    PROTOSS_CYBERNETICS_CORE = 164
    PROTOSS_TEMPLAR_ARCHIVES = 165
    PROTOSS_FORGE = 166
    PROTOSS_STARGATE = 167
    PROTOSS_FLEET_BEACON = 169
    PROTOSS_ARBITER_TRIBUNAL = 170
    PROTOSS_ROBOTICS_SUPPORT_BAY = 171
    PROTOSS_SHIELD_BATTERY = 172

    UNKNOWN = 229

    @classmethod
    def parse(cls, value: "int | str") -> "UnitType":
        """Parse a code or a member name; unknown values map to UNKNOWN."""
        if isinstance(value, str) and not value.lstrip("-").isdigit():
            return cls.__members__.get(value.upper(), cls.UNKNOWN)
        try:
            return cls(int(value))
        except ValueError:
            return cls.UNKNOWN


class UnitEventType(IntEnum):
    """Kinds of unit events counted per game."""

    UNIT_DESTROY = 0
    UNIT_CREATE = 1
    UNIT_MORPH = 2
    UNIT_RENEGADE = 3
    UNIT_COMPLETE = 4

    @classmethod
    def parse(cls, value: "int | str") -> "UnitEventType":
        if isinstance(value, str) and not value.lstrip("-").isdigit():
            return cls[value.upper()]
        return cls(int(value))
