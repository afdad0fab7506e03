# Models module
from app.models.clip import Clip
from app.models.montage import Montage
from app.models.job import UploadJob
from app.models.profile import Profile

__all__ = ["Clip", "Montage", "UploadJob", "Profile"]
