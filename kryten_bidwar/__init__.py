"""kryten-bidwar — Bid war attribution and tally microservice."""
from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("kryten-bidwar")
except PackageNotFoundError:
    __version__ = "0.0.0"
