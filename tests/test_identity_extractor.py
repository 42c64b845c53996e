import asyncio

import numpy as np
import pytest

from conftest import FakeOcr
from exam_vision.adapters.extraction.identity_extractor import IdentityExtractor
from exam_vision.core.errors import RecognitionError


@pytest.fixture
def region():
    img = np.full((20, 60, 3), 255, dtype=np.uint8)
    img[5:15, 5:55] = 0
    return img


async def extract(text, region, confidence=0.9):
    return await IdentityExtractor(FakeOcr(text, confidence)).extract_identity(region)


class TestExtractIdentity:
    @pytest.mark.asyncio
    async def test_with_separators_and_valid_check_digit(self, region):
        result = await extract("1 2.3 4 5 6 7 8-5", region)

        assert result.success and result.is_valid
        assert result.raw_number == "12345678"
        assert result.formatted_number == "12.345.678"
        assert result.check_digit == "5"
        assert not result.was_corrected
        assert result.confidence == pytest.approx(0.9)
        assert result.raw_recognized_text == "1 2.3 4 5 6 7 8-5"
        assert result.error is None

    @pytest.mark.asyncio
    async def test_wrong_check_digit_is_corrected(self, region):
        result = await extract("12345678-9", region)
        assert result.success and result.is_valid and result.was_corrected
        assert result.check_digit == "5"

    @pytest.mark.asyncio
    async def test_missing_check_digit_is_derived(self, region):
        result = await extract("12345678", region)
        assert result.success and result.is_valid
        assert result.check_digit == "5"
        assert not result.was_corrected

    @pytest.mark.asyncio
    async def test_trailing_k(self, region):
        result = await extract("1000005k", region)
        # cleaned to 8 chars: body 1000005, check digit k
        assert result.raw_number == "1000005"
        assert result.check_digit == "K"
        assert result.is_valid and not result.was_corrected

    @pytest.mark.asyncio
    async def test_trailing_k_wrong_for_body(self, region):
        result = await extract("1234567K", region)
        assert result.raw_number == "1234567"
        assert result.check_digit == "4"
        assert result.was_corrected and result.is_valid

    @pytest.mark.asyncio
    async def test_inner_k_noise_leaves_seven_digit_body(self, region):
        result = await extract("12K34567", region)
        assert result.success
        assert result.raw_number == "1234567"
        assert result.formatted_number == "1.234.567"
        assert result.check_digit == "4"
        assert not result.was_corrected

    @pytest.mark.asyncio
    async def test_seven_characters_is_too_short(self, region):
        result = await extract("1234567", region)
        assert not result.success
        assert not result.is_valid
        assert result.raw_number == "123456"

    @pytest.mark.asyncio
    async def test_noise_only(self, region):
        result = await extract("abc -- ..", region)
        assert not result.success
        assert result.raw_number == ""
        assert result.check_digit == ""

    @pytest.mark.asyncio
    async def test_too_many_characters_is_ambiguous(self, region):
        result = await extract("1234567890", region)
        assert not result.success
        assert "Ambiguous" in result.error

    @pytest.mark.asyncio
    async def test_engine_receives_binarized_upscaled_image(self, region):
        engine = FakeOcr("12345678")
        await IdentityExtractor(engine).extract_identity(region)

        (img,) = engine.images
        assert img.shape == (60, 180)
        assert set(np.unique(img)) == {0, 255}

    @pytest.mark.asyncio
    async def test_recognition_failure_is_captured(self, region):
        engine = FakeOcr(error=RecognitionError("tesseract crashed"))
        result = await IdentityExtractor(engine).extract_identity(region)
        assert not result.success
        assert "tesseract crashed" in result.error

    @pytest.mark.asyncio
    async def test_invalid_region_is_captured(self):
        result = await IdentityExtractor(FakeOcr("12345678")).extract_identity(np.zeros((0, 0, 3), dtype=np.uint8))
        assert not result.success
        assert result.error

    @pytest.mark.asyncio
    async def test_engine_load_failure_is_captured(self, region):
        engine = FakeOcr(load_error=RecognitionError("tesseract missing"))
        extractor = IdentityExtractor(engine)
        result = await extractor.extract_identity(region)
        assert not result.success
        assert "tesseract missing" in result.error
        assert extractor.get_status().state == "failed"


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_lazy_single_load(self, region):
        engine = FakeOcr("12345678")
        extractor = IdentityExtractor(engine)
        assert not extractor.get_status().initialized

        await asyncio.gather(*(extractor.extract_identity(region) for _ in range(3)))

        assert engine.loads == 1
        status = extractor.get_status()
        assert status.initialized and status.state == "ready"

    @pytest.mark.asyncio
    async def test_terminate(self, region):
        engine = FakeOcr("12345678")
        extractor = IdentityExtractor(engine)
        await extractor.initialize()
        await extractor.terminate()

        assert engine.closed
        assert not extractor.is_initialized

        await extractor.extract_identity(region)
        assert engine.loads == 2


def test_static_helpers():
    assert IdentityExtractor.calculate_check_digit("12345678") == "5"
    assert IdentityExtractor.validate("12345678", "5")
    assert IdentityExtractor.format_number("12345678") == "12.345.678"
