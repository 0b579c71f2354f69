# Force SQLModel table registration at test discovery time
from app.models.match import Match  # noqa: F401
from app.models.participant import Participant  # noqa: F401
from app.models.tournament import Tournament  # noqa: F401
