from enum import Enum

class ExamType(str, Enum):
    PUBLIC = "PUBLIC"    # 공채
    CAREER = "CAREER"    # 경행경채

class Gender(str, Enum):
    MALE = "MALE"
    FEMALE = "FEMALE"

class BonusType(str, Enum):
    NONE = "NONE"
    VETERAN_5 = "VETERAN_5"      # 취업지원대상자 5%
    VETERAN_10 = "VETERAN_10"    # 취업지원대상자 10%
    HERO_3 = "HERO_3"            # 의사상자 3%
    HERO_5 = "HERO_5"            # 의사상자 5%

    @property
    def is_hero(self) -> bool:
        return self in (BonusType.HERO_3, BonusType.HERO_5)

class SnapshotStatus(str, Enum):
    READY = "READY"
    COLLECTING_MISSING_APPLICANT_COUNT = "COLLECTING_MISSING_APPLICANT_COUNT"
    COLLECTING_INSUFFICIENT_SAMPLE = "COLLECTING_INSUFFICIENT_SAMPLE"
    COLLECTING_LOW_PARTICIPATION = "COLLECTING_LOW_PARTICIPATION"
    COLLECTING_UNSTABLE = "COLLECTING_UNSTABLE"

class RankingBasis(str, Enum):
    ALL_PARTICIPANTS = "ALL_PARTICIPANTS"                 # target has a failed subject
    NON_CUTOFF_PARTICIPANTS = "NON_CUTOFF_PARTICIPANTS"   # target passed every subject

class ScoreChange(str, Enum):
    INCREASED = "INCREASED"
    DECREASED = "DECREASED"
    UNCHANGED = "UNCHANGED"

class ReleaseSource(str, Enum):
    ADMIN = "ADMIN"
    AUTO = "AUTO"

class AutoReleaseMode(str, Enum):
    HYBRID = "HYBRID"
    TRAFFIC_ONLY = "TRAFFIC_ONLY"
    CRON_ONLY = "CRON_ONLY"

class AutoReleaseTrigger(str, Enum):
    TRAFFIC = "traffic"
    CRON = "cron"

class ThresholdProfile(str, Enum):
    BALANCED = "BALANCED"
    CONSERVATIVE = "CONSERVATIVE"
    AGGRESSIVE = "AGGRESSIVE"

class AutoReleaseReason(str, Enum):
    AUTO_DISABLED = "AUTO_DISABLED"
    MODE_BLOCKED = "MODE_BLOCKED"
    INTERVAL_THROTTLED = "INTERVAL_THROTTLED"
    NO_ACTIVE_EXAM = "NO_ACTIVE_EXAM"
    NO_TARGET_ROWS = "NO_TARGET_ROWS"
    ALL_RELEASES_COMPLETED = "ALL_RELEASES_COMPLETED"
    THRESHOLD_NOT_REACHED = "THRESHOLD_NOT_REACHED"
    NO_ADMIN_USER = "NO_ADMIN_USER"
    RELEASE_CREATED = "RELEASE_CREATED"
    DUPLICATED = "DUPLICATED"

class PredictionGrade(str, Enum):
    SURE = "SURE"            # 확실권
    LIKELY = "LIKELY"        # 유력권
    POSSIBLE = "POSSIBLE"    # 가능권
    CHALLENGE = "CHALLENGE"  # 도전권

class PyramidLevel(str, Enum):
    SURE = "SURE"
    LIKELY = "LIKELY"
    POSSIBLE = "POSSIBLE"
    CHALLENGE = "CHALLENGE"
    BELOW_CHALLENGE = "BELOW_CHALLENGE"

class DifficultyLevel(str, Enum):
    EASY = "EASY"
    NORMAL = "NORMAL"
    HARD = "HARD"
    VERY_HARD = "VERY_HARD"
