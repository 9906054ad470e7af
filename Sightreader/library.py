import json
from pathlib import Path
from typing import Optional, Union

from errors import ScoreParseError
from midi_tune import MidiTune
from score_text import preprocess_score_text
from sr_types import Tune

MIDI_SUFFIXES = {".mid", ".midi"}
PLAYLIST_SUFFIX = ".pls"


class DirectoryLibrary:
    """
    Score files under one directory, addressed by file name.

    MIDI files come back as ready tunes; anything else is returned as
    preprocessed score text for the session's parser.
    """

    def __init__(self, root, channel: Optional[int] = None):
        self.root = Path(root)
        self.channel = channel

    def path(self, item_id: str) -> Path:
        return self.root / item_id

    def fetch(self, item_id: str) -> Union[str, Tune]:
        p = self.path(item_id)
        if p.suffix.lower() in MIDI_SUFFIXES:
            try:
                return MidiTune.from_file(p, channel=self.channel)
            except FileNotFoundError:
                raise
            except (OSError, EOFError, ValueError, KeyError) as e:
                # mido reports a bad header as OSError
                raise ScoreParseError(f"{item_id}: {e}") from e
        return preprocess_score_text(p.read_text(encoding="utf-8-sig"))

    def load_playlist(self, name: str) -> list[str]:
        data = json.loads(self.path(name).read_text(encoding="utf-8-sig"))
        if not isinstance(data, list) or not all(isinstance(x, str) for x in data):
            raise ValueError(f"{name}: playlist must be a JSON list of file names")
        return data

    @staticmethod
    def is_playlist(name: str) -> bool:
        return name.lower().endswith(PLAYLIST_SUFFIX)
