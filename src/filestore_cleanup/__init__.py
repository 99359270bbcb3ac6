"""filestore-cleanup: remove filestore blocks whose backing file is gone."""

__version__ = "0.3.0"
