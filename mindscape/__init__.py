import os
import re
from pathlib import Path
from typing import Dict

__version__ = "0.3.0"

_ENV_LINE = re.compile(r"^(?:export\s+)?([A-Za-z_][A-Za-z0-9_]*)\s*=\s*(.*)$")


def read_env_file(path: Path) -> Dict[str, str]:
	"""Parse KEY=value lines; blanks, comments and malformed lines are skipped."""
	values: Dict[str, str] = {}
	try:
		text = path.read_text(encoding="utf-8")
	except OSError:
		return values
	for raw in text.splitlines():
		m = _ENV_LINE.match(raw.strip())
		if not m:
			continue
		key, val = m.group(1), m.group(2).strip()
		if len(val) >= 2 and val[0] == val[-1] and val[0] in "\"'":
			val = val[1:-1]
		values[key] = val
	return values


def load_env_file(path: Path) -> int:
	"""Copy values from ``path`` into os.environ without overriding what is set; returns how many were added."""
	added = 0
	for key, val in read_env_file(path).items():
		if key not in os.environ:
			os.environ[key] = val
			added += 1
	return added


# Under pytest the environment stays hermetic: no developer .env is read
if not os.getenv("PYTEST_CURRENT_TEST"):
	load_env_file(Path(os.getenv("MINDSCAPE_ENV_FILE", ".env")))
