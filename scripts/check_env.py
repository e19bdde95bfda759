#!/usr/bin/env python3
import os, sys, shutil, traceback

def ok(msg): print("[OK] " + msg)
def warn(msg): print("[WARN] " + msg)
def fail(msg): print("[FAIL] " + msg); sys.exit(1)

# 1) OpenCV for key-frame extraction
try:
    import cv2  # noqa
    ok(f"OpenCV {cv2.__version__} import is available")
except Exception:
    traceback.print_exc()
    fail("OpenCV not available. Install via: pip install opencv-python")

# 2) ffmpeg for compression and the frame fallback
if shutil.which("ffmpeg"):
    ok("ffmpeg found in PATH")
else:
    fail("ffmpeg not found in PATH. Install via: brew install ffmpeg")

# 3) Gemini credentials
if os.environ.get("GEMINI_API_KEY"):
    ok("GEMINI_API_KEY is set")
else:
    warn("GEMINI_API_KEY is not set; analysis requests will fail")

# 4) Ensure folders
base = os.path.abspath(os.environ.get("REELSCOPE_BASE_DIR", "."))
for sub in ("data", "uploads", "logs"):
    p = os.path.join(base, sub)
    os.makedirs(p, exist_ok=True)
ok(f"Folders ensured at {base}")

print("\nEnvironment check passed")
