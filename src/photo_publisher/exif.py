"""
Read embedded camera attributes from image bytes.

Camera metadata only enriches the prompt sent to the vision model, so every
failure here degrades to an empty ExifAttributes value instead of aborting
the batch.
"""

from datetime import datetime
from io import BytesIO
from itertools import chain
from pathlib import Path
from typing import Any

from loguru import logger
from PIL import ExifTags, Image

from photo_publisher.errors import ExifReadError
from photo_publisher.models import ExifAttributes


EXIF_DATETIME_FORMAT = "%Y:%m:%d %H:%M:%S"


def _to_float(value: Any) -> float | None:  # noqa: ANN401
    """
    Coerce EXIF rationals, tuples and numbers into a float.

    Examples:
        >>> _to_float((1, 250))
        0.004
        >>> _to_float((1, 0)) is None
        True

    """
    if value is None:
        return None
    if isinstance(value, tuple) and len(value) == 2:  # noqa: PLR2004
        numerator, denominator = value
        if not denominator:
            return None
        return float(numerator) / float(denominator)
    try:
        result = float(value)
    except (TypeError, ValueError, ZeroDivisionError):
        return None
    # IFDRational with a zero denominator converts to nan
    return None if result != result else result  # noqa: PLR0124


def _to_int(value: Any) -> int | None:  # noqa: ANN401
    if isinstance(value, (tuple, list)):
        value = value[0] if value else None
    number = _to_float(value)
    return int(number) if number is not None else None


def _to_text(value: Any) -> str | None:  # noqa: ANN401
    if value is None:
        return None
    if isinstance(value, bytes):
        value = value.decode("utf-8", errors="ignore")
    text = str(value).strip("\x00 ").strip()
    return text or None


def _parse_datetime(value: Any) -> datetime | None:  # noqa: ANN401
    text = _to_text(value)
    if not text:
        return None
    try:
        return datetime.strptime(text, EXIF_DATETIME_FORMAT)  # noqa: DTZ007
    except ValueError:
        logger.debug("exif_datetime_unparseable", value=text)
        return None


def _dms_to_degrees(dms: Any, ref: Any) -> float | None:  # noqa: ANN401
    """
    Convert a degrees/minutes/seconds triple into signed decimal degrees.

    Examples:
        >>> _dms_to_degrees((48.0, 51.0, 36.0), "N")
        48.86
        >>> _dms_to_degrees((2.0, 21.0, 0.0), "W")
        -2.35

    """
    if not isinstance(dms, (tuple, list)) or len(dms) != 3:  # noqa: PLR2004
        return None
    parts = [_to_float(part) for part in dms]
    if any(part is None for part in parts):
        return None
    degrees, minutes, seconds = parts
    decimal = degrees + minutes / 60 + seconds / 3600  # type: ignore[operator]
    if _to_text(ref) in {"S", "W"}:
        decimal = -decimal
    return round(decimal, 6)


def _format_camera(make: Any, model: Any) -> str | None:  # noqa: ANN401
    make_text = _to_text(make)
    model_text = _to_text(model)
    if not make_text and not model_text:
        return None
    return f"{make_text or 'Unknown'} {model_text or 'Unknown'}"


def read_exif_tags(data: bytes) -> dict[str, Any]:
    """
    Return the raw IFD0, Exif and GPS tags keyed by their EXIF names.

    Raises:
        ExifReadError: The bytes are not a decodable image or the tag block is corrupt.

    """
    try:
        with Image.open(BytesIO(data)) as img:
            exif = img.getexif()
            exif_ifd = exif.get_ifd(ExifTags.IFD.Exif)
            gps_ifd = exif.get_ifd(ExifTags.IFD.GPSInfo)
            base = dict(exif.items())
    except Exception as exc:  # noqa: BLE001
        raise ExifReadError(str(exc)) from exc

    tags: dict[str, Any] = {}
    for tag_id, value in chain(base.items(), exif_ifd.items()):
        tags[ExifTags.TAGS.get(tag_id, str(tag_id))] = value
    for tag_id, value in gps_ifd.items():
        tags[ExifTags.GPSTAGS.get(tag_id, str(tag_id))] = value
    return tags


def extract_exif_attributes(data: bytes) -> ExifAttributes:
    """
    Derive the camera attributes used as prompt context.

    Args:
        data: Raw image bytes (JPEG or PNG)

    Returns:
        ExifAttributes with whatever fields could be read; an empty value when the
        image carries no tags or cannot be parsed at all. Never raises.

    """
    try:
        tags = read_exif_tags(data)
    except ExifReadError as exc:
        logger.warning("exif_read_failed", error=str(exc))
        return ExifAttributes()

    if not tags:
        logger.info("no_exif_tags_found")
        return ExifAttributes()

    attributes = ExifAttributes(
        captured_at=_parse_datetime(tags.get("DateTimeOriginal") or tags.get("DateTime")),
        camera=_format_camera(tags.get("Make"), tags.get("Model")),
        exposure_time=_to_float(tags.get("ExposureTime")),
        f_number=_to_float(tags.get("FNumber")),
        iso=_to_int(tags.get("ISOSpeedRatings") or tags.get("PhotographicSensitivity")),
        focal_length=_to_float(tags.get("FocalLength")),
        gps_latitude=_dms_to_degrees(tags.get("GPSLatitude"), tags.get("GPSLatitudeRef")),
        gps_longitude=_dms_to_degrees(tags.get("GPSLongitude"), tags.get("GPSLongitudeRef")),
    )
    logger.debug("exif_attributes_extracted", **attributes.model_dump(exclude_none=True))
    return attributes


def extract_exif_from_path(image_path: Path) -> ExifAttributes:
    """Read the file and delegate to extract_exif_attributes; unreadable files yield no tags."""
    try:
        data = image_path.read_bytes()
    except OSError as exc:
        logger.warning("exif_source_unreadable", file=str(image_path), error=str(exc))
        return ExifAttributes()
    return extract_exif_attributes(data)
