from backend.models.chat import ClassMessage, DirectMessage, StudyGroupMessage
from backend.models.lesson import Lesson
from backend.models.platform_setting import PlatformSetting
from backend.models.poll import Poll, PollVote
from backend.models.profile import Profile
from backend.models.study_group import StudyGroup

__all__ = [
    "Profile",
    "Lesson",
    "ClassMessage",
    "DirectMessage",
    "StudyGroupMessage",
    "StudyGroup",
    "PlatformSetting",
    "Poll",
    "PollVote",
]
