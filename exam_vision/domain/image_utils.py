from typing import Tuple

import numpy as np
import cv2

LETTERBOX_FILL = 255  # white, like the paper
RECOGNITION_UPSCALE = 3
BINARY_THRESHOLD = 127


def decode_image(data: bytes) -> np.ndarray:
    """
    Decodes encoded image bytes (jpg/png/webp) into an RGB array.
    """
    img_array = np.frombuffer(data, np.uint8)
    img = cv2.imdecode(img_array, cv2.IMREAD_COLOR)
    if img is None:
        raise ValueError("Could not decode image")
    return cv2.cvtColor(img, cv2.COLOR_BGR2RGB)


def ensure_rgb(img: np.ndarray) -> np.ndarray:
    """
    Normalizes grayscale / RGBA input to a 3-channel uint8 RGB array.
    """
    if img is None or not isinstance(img, np.ndarray) or img.size == 0:
        raise ValueError("Empty image")
    if img.dtype != np.uint8:
        raise ValueError(f"Unsupported image dtype {img.dtype}")

    if img.ndim == 2:
        return cv2.cvtColor(img, cv2.COLOR_GRAY2RGB)
    if img.ndim == 3 and img.shape[2] == 1:
        return cv2.cvtColor(img[:, :, 0], cv2.COLOR_GRAY2RGB)
    if img.ndim == 3 and img.shape[2] == 4:
        return cv2.cvtColor(img, cv2.COLOR_RGBA2RGB)
    if img.ndim == 3 and img.shape[2] == 3:
        return img
    raise ValueError(f"Unsupported image shape {img.shape}")


def letterbox(img_rgb: np.ndarray, size: int, fill: int = LETTERBOX_FILL) -> Tuple[np.ndarray, float, int, int]:
    """
    Resizes into a size x size canvas keeping aspect ratio, centred, padding
    with ``fill``. Returns (canvas, scale, offset_x, offset_y).
    """
    h, w = img_rgb.shape[:2]
    if h < 1 or w < 1:
        raise ValueError("Degenerate image for letterboxing")

    scale = min(size / w, size / h)
    new_w = max(1, min(size, int(round(w * scale))))
    new_h = max(1, min(size, int(round(h * scale))))
    resized = cv2.resize(img_rgb, (new_w, new_h), interpolation=cv2.INTER_LINEAR)

    offset_x = (size - new_w) // 2
    offset_y = (size - new_h) // 2

    canvas = np.full((size, size, 3), fill, dtype=np.uint8)
    canvas[offset_y:offset_y + new_h, offset_x:offset_x + new_w] = resized
    return canvas, scale, offset_x, offset_y


def to_planar_tensor(canvas_rgb: np.ndarray) -> np.ndarray:
    """HWC uint8 -> 1 x C x H x W float32 in [0, 1]."""
    chw = canvas_rgb.astype(np.float32).transpose(2, 0, 1) / 255.0
    return np.ascontiguousarray(chw[np.newaxis, ...])


def preprocess_for_recognition(region: np.ndarray) -> np.ndarray:
    """
    Returns a pure black/white image ready for digit OCR.
    """
    rgb = ensure_rgb(region)

    # 1) Upscale without smoothing so glyph edges stay crisp
    big = cv2.resize(
        rgb, None,
        fx=RECOGNITION_UPSCALE, fy=RECOGNITION_UPSCALE,
        interpolation=cv2.INTER_NEAREST
    )

    # 2) Luminance
    gray = cv2.cvtColor(big, cv2.COLOR_RGB2GRAY)

    # 3) Fixed mid-range threshold (> 127 -> white)
    _, thr = cv2.threshold(gray, BINARY_THRESHOLD, 255, cv2.THRESH_BINARY)
    return thr


def crop_with_padding(img: np.ndarray, x1, y1, x2, y2, pad: int = 10):
    x1p = max(0, int(x1) - pad)
    y1p = max(0, int(y1) - pad)
    x2p = min(img.shape[1], int(x2) + pad)
    y2p = min(img.shape[0], int(y2) + pad)
    return img[y1p:y2p, x1p:x2p]
