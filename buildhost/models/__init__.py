from buildhost.models.user import User
from buildhost.models.game import Game
from buildhost.models.upload import Upload
from buildhost.models.build import Build, BuildFile
from buildhost.models.channel import Channel
from buildhost.models.job import Job

__all__ = [
    "User",
    "Game",
    "Upload",
    "Build",
    "BuildFile",
    "Channel",
    "Job",
]
