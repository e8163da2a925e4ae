from pathlib import Path

from fastapi.templating import Jinja2Templates

from tvtracker.config import flags, settings
from tvtracker.utils import format_runtime, format_watch_time, pad_number

templates = Jinja2Templates(directory=Path(__file__).parent / "templates")

templates.env.filters["watch_time"] = format_watch_time
templates.env.filters["runtime"] = format_runtime
templates.env.filters["pad"] = pad_number
templates.env.globals["flags"] = flags
templates.env.globals["environment_name"] = settings.environment_name
