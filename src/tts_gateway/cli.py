"""
Command-Line Interface for tts-gateway.

Runs the synthesis pipeline without the HTTP server.

Usage Examples:
    # Single text synthesis
    tts-gateway --text "Diagnostics complete, Sir." --out reply.mp3

    # Positional text (same as above)
    tts-gateway "Diagnostics complete, Sir." --out reply.mp3

    # Batch processing from file
    tts-gateway --file inputs.txt --out output_dir/

    # Streamed synthesis written chunk by chunk
    tts-gateway "Long announcement..." --stream --out long.mp3

    # Dry-run (no network): profile, enhanced text and cache key
    tts-gateway --text "System error detected, Sir." --dry-run --json

    # Account information
    tts-gateway --voices
    tts-gateway --quota

Environment Variables:
    TTS_GATEWAY_API_KEY: Provider credential
    TTS_GATEWAY_VOICE_ID: Default voice
    TTS_GATEWAY_SETTINGS: Settings file path
"""

from __future__ import annotations

import argparse
import asyncio
import json
from dataclasses import asdict
from pathlib import Path
from typing import Any, Dict, List, Optional
from uuid import uuid4

from tts_gateway.core.config import GatewayConfig, load_settings
from tts_gateway.core.errors import SynthesisError
from tts_gateway.core.logging import configure_logging, fail, get_logger, info, set_request_id
from tts_gateway.services.orchestrator import SynthesisOrchestrator, SynthesisRequest, build_orchestrator
from tts_gateway.services.validators import ValidationError, validate_text, validate_voice_id
from tts_gateway.tts.enhancer import enhance
from tts_gateway.tts.keys import make_cache_key
from tts_gateway.tts.profiles import classify_sentiment, resolve_profile, select_profile


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="tts-gateway CLI (serverless synth)")

    parser.add_argument("text_pos", nargs="?", help="Text to synthesize (positional)")
    parser.add_argument("--text", help="Text to synthesize")
    parser.add_argument("--file", help="Batch input file (1 line = 1 item)")

    parser.add_argument("--out", help="Output path (file or dir in batch mode)")
    parser.add_argument("--voice", help="Voice ID override")
    parser.add_argument("--settings", help="Settings YAML path")

    parser.add_argument("--stream", action="store_true",
                        help="Use streaming synthesis")
    parser.add_argument("--dry-run", action="store_true",
                        help="Show profile, enhanced text and cache key without synth")
    parser.add_argument("--json", action="store_true",
                        help="Print JSON summary")

    parser.add_argument("--voices", action="store_true",
                        help="List provider voices")
    parser.add_argument("--quota", action="store_true",
                        help="Show account quota")

    return parser.parse_args(argv)


def _load_texts(args: argparse.Namespace) -> List[str]:
    """
    Load input texts from the positional argument, --text or --file.

    Raises:
        SystemExit: If no input provided or conflicting options used.
    """
    text = args.text or args.text_pos

    if args.file:
        if text:
            raise SystemExit("Use --file without --text or positional text.")
        lines = Path(args.file).read_text(encoding="utf-8").splitlines()
        items = [line.strip() for line in lines if line.strip()]
        if not items:
            raise SystemExit("Input file is empty.")
        return items

    if not text:
        raise SystemExit("Provide --text or a positional text.")
    return [text]


def _resolve_output_paths(args: argparse.Namespace, count: int) -> List[Path]:
    if args.file:
        out_dir = Path(args.out or "out")
        out_dir.mkdir(parents=True, exist_ok=True)
        return [out_dir / f"item_{i + 1:03d}.mp3" for i in range(count)]

    out_path = Path(args.out or "out.mp3")
    out_path.parent.mkdir(parents=True, exist_ok=True)
    return [out_path]


def _summary_for_text(text: str, voice_id: Optional[str], config: GatewayConfig) -> Dict[str, Any]:
    """Everything the pipeline decides before the network, for one text."""
    profile = select_profile(text, resolve_profile(config.provider.default_profile))
    return {
        "text_len": len(text),
        "voice_id": voice_id,
        "sentiment": classify_sentiment(text) or "default",
        "profile": asdict(profile),
        "enhanced": enhance(text),
        "cache_key": make_cache_key(text, voice_id, profile) if voice_id else None,
    }


def _emit(payload: Dict[str, Any], as_json: bool) -> None:
    if as_json:
        print(json.dumps(payload, ensure_ascii=False))
    else:
        print(payload)


async def _synthesize_all(
    gateway: SynthesisOrchestrator,
    texts: List[str],
    out_paths: List[Path],
    voice_id: Optional[str],
    stream: bool,
) -> List[Dict[str, Any]]:
    log = get_logger("tts-gateway.cli")
    results = []
    try:
        for text, out_path in zip(texts, out_paths):
            info(log, "synth_start", chars=len(text), out=str(out_path), stream=stream)
            request = SynthesisRequest(text=text, voice_id=voice_id, streaming=stream)
            written = 0
            if stream:
                with out_path.open("wb") as f:
                    async for chunk in gateway.stream_speech(request):
                        f.write(chunk)
                        written += len(chunk)
            else:
                audio = await gateway.generate_speech(request)
                out_path.write_bytes(audio)
                written = len(audio)
            results.append({"out": str(out_path), "bytes": written})
    finally:
        await gateway.aclose()
    return results


async def _account_info(gateway: SynthesisOrchestrator, voices: bool, quota: bool) -> Dict[str, Any]:
    payload: Dict[str, Any] = {"ok": True}
    try:
        if voices:
            payload["voices"] = [v.to_dict() for v in await gateway.list_voices()]
        if quota:
            snapshot = await gateway.get_quota(force_refresh=True)
            payload["quota"] = asdict(snapshot) if snapshot is not None else None
    finally:
        await gateway.aclose()
    return payload


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main CLI entry point.

    Returns:
        Exit code (0 for success, 1 for synthesis/config errors, 2 for bad input).
    """
    args = _parse_args(argv)

    configure_logging()
    log = get_logger("tts-gateway.cli")
    set_request_id(uuid4().hex[:12])

    settings = load_settings(args.settings, allow_missing=args.settings is None)
    try:
        config = settings.get_gateway_config()
    except SynthesisError as e:
        fail(log, "config_invalid", error=e.message)
        _emit(e.to_dict(), args.json)
        return 1

    try:
        voice_id = validate_voice_id(args.voice) or config.provider.voice_id or None
    except ValidationError as e:
        _emit({"ok": False, "error": e.code, "message": e.message}, args.json)
        return 2

    if args.voices or args.quota:
        try:
            payload = asyncio.run(_account_info(build_orchestrator(config=config), args.voices, args.quota))
        except SynthesisError as e:
            fail(log, "account_info_failed", error=e.message)
            _emit(e.to_dict(), args.json)
            return 1
        _emit(payload, args.json)
        return 0

    try:
        texts = [validate_text(t) for t in _load_texts(args)]
    except ValidationError as e:
        _emit({"ok": False, "error": e.code, "message": e.message}, args.json)
        return 2

    if args.dry_run:
        summaries = [_summary_for_text(t, voice_id, config) for t in texts]
        payload = {"ok": True, "dry_run": True, "items": summaries}
        if not args.json:
            info(log, "dry_run", items=len(texts), voice_id=voice_id)
        _emit(payload, args.json)
        print("DRY_RUN_OK")
        return 0

    out_paths = _resolve_output_paths(args, len(texts))
    try:
        gateway = build_orchestrator(config=config)
        results = asyncio.run(_synthesize_all(gateway, texts, out_paths, voice_id, args.stream))
    except SynthesisError as e:
        fail(log, "cli_failed", error=e.message, code=e.code)
        _emit(e.to_dict(), args.json)
        return 1

    _emit({"ok": True, "dry_run": False, "items": results}, args.json)
    print("CLI_OK")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
