from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Sequence

from .errors import ExternalToolFailure
from .logging_config import get_logger
from .models import ConversionOptions


logger = get_logger(__name__)

# The whole-set embed string pdf2htmlEX documents; emitted verbatim when every flag is on.
CANONICAL_EMBED = "cfijo"

# Mount points inside the converter container.
WORK_MOUNT = "/pdf"
INPUT_MOUNT = "/input"

# stderr lines carrying any of these are progress chatter, not failures.
BENIGN_DIAGNOSTIC_MARKERS = (
    "WARNING:",
    "Processing",
    "Preprocessing",
    "Working:",
    "platform",
    "ToUnicode CMap",
)


def build_embed_flags(options: ConversionOptions) -> str:
    """Return the value for pdf2htmlEX ``--embed``.

    CSS is always embedded; fonts, images, scripts and outline unless explicitly
    disabled.
    """
    flags = ["c"]
    if options.embed_fonts is not False:
        flags.append("f")
    if options.embed_images is not False:
        flags.append("i")
    if options.embed_scripts is not False:
        flags.append("j")
    if options.embed_outline is not False:
        flags.append("o")

    if len(flags) == len(CANONICAL_EMBED):
        return CANONICAL_EMBED
    return "".join(flags)


def build_additional_args(options: ConversionOptions) -> list[str]:
    args: list[str] = []
    if options.split_pages:
        args += ["--split-pages", "1"]
    if options.zoom:
        args += ["--zoom", f"{options.zoom:g}"]
    # pdf2htmlEX has no DPI switch; options.dpi is not forwarded.
    return args


def split_diagnostics(stderr_text: str) -> tuple[list[str], list[str]]:
    """Split converter stderr into (benign, fatal) non-empty lines."""
    benign: list[str] = []
    fatal: list[str] = []
    for raw_line in (stderr_text or "").splitlines():
        line = raw_line.strip()
        if not line:
            continue
        if any(marker in line for marker in BENIGN_DIAGNOSTIC_MARKERS):
            benign.append(line)
        else:
            fatal.append(line)
    return benign, fatal


class Pdf2HtmlEx:
    """Runs pdf2htmlEX in a throwaway container.

    The conversion's working directory is bind-mounted read-write, the input's
    directory read-only, so every file the tool writes lands where the host can
    read it. Nothing is cleaned up here on failure; that belongs to the caller.
    """

    def __init__(
        self,
        docker_bin: str = "docker",
        image: str = "bwits/pdf2htmlex",
        platform: str | None = "linux/amd64",
        timeout_seconds: float = 300.0,
    ) -> None:
        self.docker_bin = docker_bin
        self.image = image
        self.platform = platform
        self.timeout_seconds = timeout_seconds

    def build_command(
        self,
        input_path: Path,
        work_dir: Path,
        output_filename: str,
        options: ConversionOptions,
    ) -> list[str]:
        cmd = [self.docker_bin, "run"]
        if self.platform:
            cmd += ["--platform", self.platform]
        cmd += [
            "--rm",
            "-v",
            f"{work_dir.resolve()}:{WORK_MOUNT}",
            "-v",
            f"{input_path.resolve().parent}:{INPUT_MOUNT}:ro",
            self.image,
            "pdf2htmlEX",
            "--embed",
            build_embed_flags(options),
            *build_additional_args(options),
            "--dest-dir",
            WORK_MOUNT,
            f"{INPUT_MOUNT}/{input_path.name}",
            output_filename,
        ]
        return cmd

    async def run(
        self,
        input_path: Path,
        work_dir: Path,
        output_filename: str,
        options: ConversionOptions,
    ) -> None:
        cmd = self.build_command(input_path, work_dir, output_filename, options)
        logger.debug("Running converter: %s", " ".join(cmd))
        await self._execute(cmd)

    async def _execute(self, cmd: Sequence[str]) -> None:
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise ExternalToolFailure(f"PDF conversion failed: could not start converter: {e}") from e

        try:
            _stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            try:
                proc.kill()
            except ProcessLookupError:
                pass
            await proc.wait()
            raise ExternalToolFailure(
                f"PDF conversion failed: converter timed out after {self.timeout_seconds:g}s"
            )

        stderr_text = stderr.decode("utf-8", errors="replace")
        benign, fatal = split_diagnostics(stderr_text)

        if proc.returncode != 0:
            raise ExternalToolFailure(
                f"PDF conversion failed (exit {proc.returncode}): {stderr_text.strip()}",
                diagnostics=stderr_text,
            )
        if fatal:
            raise ExternalToolFailure(f"PDF conversion failed: {stderr_text.strip()}", diagnostics=stderr_text)
        if benign:
            logger.warning("PDF conversion warning: %s", " | ".join(benign))
