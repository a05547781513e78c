import io
import os
import glob
import time
import datetime
import logging
import contextlib
import tempfile
from typing import Any, Optional

import msgpack # type: ignore

from starquest import __version__, config, util
from starquest.engine import NarrativeEngine
from starquest.narrative.errors import SaveGameError

class SaveGame:
    def __init__(self, format_version:int, engine_version:str, save_date:datetime.datetime, filename:str=""):
        self.filename = filename
        self.format_version = format_version
        self.engine_version = engine_version
        self.save_date = save_date

    def __repr__(self) -> str:
        return f'SaveGame({self.filename} v{self.format_version} {self.save_date.isoformat()})'

class GameSaver:
    """ Writes and reads narrative engine state to and from save files.

    A save file is two msgpack objects back to back: a small metadata header
    (for quick listing) followed by the engine's serialized state. """

    def __init__(self, save_path:str="/tmp/starquest_saves") -> None:
        self.logger = logging.getLogger(util.fullname(self))
        self._save_path = save_path
        self._save_file_glob = "save_*.sqsave"
        self._autosave_glob = "autosave.sqsave"

    def _gen_save_filename(self) -> str:
        return f'save_{time.time()}.sqsave'

    def _save_metadata(self, save_file:io.IOBase) -> int:
        header = {
            "magic": config.Settings.save.MAGIC,
            "format_version": config.Settings.save.FORMAT_VERSION,
            "engine_version": __version__,
            "save_date": datetime.datetime.now().isoformat(),
        }
        return save_file.write(msgpack.packb(header))

    def _load_metadata(self, header:Any) -> SaveGame:
        if not isinstance(header, dict) or header.get("magic") != config.Settings.save.MAGIC:
            raise SaveGameError("not a save file")
        if header.get("format_version") != config.Settings.save.FORMAT_VERSION:
            raise SaveGameError(f'unsupported save format {header.get("format_version")}')
        try:
            return SaveGame(header["format_version"], header["engine_version"], datetime.datetime.fromisoformat(header["save_date"]))
        except (KeyError, ValueError, TypeError) as e:
            raise SaveGameError(f'bad save header: {e!r}') from e

    def _unpacker(self, save_file:Any) -> msgpack.Unpacker:
        # msgpack turns tuples into lists, that's fine for our blob
        return msgpack.Unpacker(save_file, raw=False, strict_map_key=False)

    def _next(self, unpacker:msgpack.Unpacker, what:str) -> Any:
        try:
            return unpacker.unpack()
        except msgpack.OutOfData as e:
            raise SaveGameError(f'save file truncated reading {what}') from e
        except (msgpack.UnpackException, ValueError) as e:
            raise SaveGameError(f'corrupt save file reading {what}: {e!r}') from e

    def autosave(self, engine:NarrativeEngine) -> str:
        return self.save(engine, os.path.join(self._save_path, self._autosave_glob))

    def save(self, engine:NarrativeEngine, save_filename:Optional[str]=None) -> str:
        self.logger.info("saving...")
        start_time = time.perf_counter()

        if save_filename is None:
            save_filename = os.path.join(self._save_path, self._gen_save_filename())
        save_dir = os.path.dirname(save_filename)
        if save_dir:
            os.makedirs(save_dir, exist_ok=True)

        bytes_written = 0
        with contextlib.ExitStack() as context_stack:
            # write to a temp file next to the destination so the rename stays
            # on one filesystem and we only ever end up with complete files
            temp_save_file = context_stack.enter_context(tempfile.NamedTemporaryFile("wb", dir=save_dir or None, delete=False))
            self.logger.debug(f'saving to temp file {temp_save_file.name}')
            save_file:io.IOBase = temp_save_file # type: ignore
            bytes_written += self._save_metadata(save_file)
            bytes_written += save_file.write(msgpack.packb(engine.serialize()))
            temp_save_file.close()
            os.replace(temp_save_file.name, save_filename)

        self.logger.info(f'saved {bytes_written}bytes to {save_filename} in {time.perf_counter()-start_time}s')
        return save_filename

    def list_save_games(self) -> list[SaveGame]:
        save_games = []
        for x in set(glob.glob(os.path.join(self._save_path, self._save_file_glob)) + glob.glob(os.path.join(self._save_path, self._autosave_glob))):
            with open(x, "rb") as f:
                try:
                    save_game = self._load_metadata(self._next(self._unpacker(f), "header"))
                except SaveGameError as e:
                    self.logger.warning(f'skipping {x}: {e}')
                    continue
                save_game.filename = x
                save_games.append(save_game)
        save_games.sort(key=lambda x: x.save_date, reverse=True)
        return save_games

    def load(self, save_filename:str, engine:NarrativeEngine) -> SaveGame:
        """ restores engine from a save file, engine is untouched on error """
        self.logger.info(f'loading {save_filename}')
        with open(save_filename, "rb") as save_file:
            unpacker = self._unpacker(save_file)
            save_game = self._load_metadata(self._next(unpacker, "header"))
            save_game.filename = save_filename
            blob = self._next(unpacker, "narrative state")
        if not isinstance(blob, dict):
            raise SaveGameError("narrative state is not a map")
        engine.restore(blob)
        self.logger.info("load complete")
        return save_game
