from __future__ import annotations

from parley.pipeline.errors import ErrorClassifier, ErrorKind


def summarize_exception(detail: str, *, max_len: int = 220) -> str:
    text = str(detail or "").strip()
    if not text:
        return "Unknown runtime error."
    lines = [ln.strip() for ln in text.splitlines() if ln.strip()]
    skip = ("File ", "^", "Traceback ", "During handling", "The above exception")
    meaningful = [ln for ln in lines if not ln.startswith(skip)]
    out = meaningful[-1] if meaningful else lines[-1]
    if len(out) > max_len:
        return out[: max_len - 3].rstrip() + "..."
    return out


_KIND_HINTS = {
    ErrorKind.AUTHENTICATION: "The service rejected the API key. Check OPENAI_API_KEY / ELEVENLABS_API_KEY.",
    ErrorKind.QUOTA_EXCEEDED: "The provider reports a quota or billing problem. Check your account usage.",
    ErrorKind.RATE_LIMIT: "Requests are being rate limited. Raise --rate-limit-delay or lower --max-concurrent-jobs.",
    ErrorKind.NETWORK: "Network failure talking to the provider. Check the internet connection.",
    ErrorKind.TIMEOUT: "The provider took too long. Try shorter utterances (--max-utter-sec).",
    ErrorKind.SERVICE_UNAVAILABLE: "The provider is having issues. Try again later.",
}


def hint_for_exception(summary: str) -> str:
    s = str(summary or "").lower()
    if "api key" in s and ("missing" in s or "not found" in s):
        return "No API key configured. Set OPENAI_API_KEY / ELEVENLABS_API_KEY or add them to the config file."
    if "no module named" in s:
        return "A required package is missing in this virtualenv. Reinstall dependencies and retry."
    if "config file not found" in s:
        return "Configured JSON file is missing. Update the config path or restore the file."
    if "microphone" in s or ("sounddevice" in s and "failed" in s):
        return "Microphone init failed. Check input device selection (--list-devices) and mic permissions."
    if "playback" in s or "output device" in s:
        return "Audio output failed. Check the output device (--output-device) or run with --no-play-audio."
    info = ErrorClassifier().classify(summary)
    return _KIND_HINTS.get(info.kind, "Check logs for full traceback.")
