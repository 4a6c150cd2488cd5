"""
NameCard Backend - Upload Service Unit Tests
=============================================

What we test:
    ✅ Single upload stores every default variant
    ✅ Single upload rejects an invalid image with ValidationError
    ✅ Multiple upload keeps valid files and reports rejected ones
    ✅ Batch size limit is a ValidationError before any work
"""

from unittest.mock import AsyncMock, patch

import pytest

from app.exceptions import ValidationError
from app.services.multipart import MultipartFile
from app.services.storage_service import StoredObject
from app.services.upload_service import ImageUploadService


def as_file(content: bytes, filename: str = "card.jpg", content_type: str = "image/jpeg") -> MultipartFile:
    return MultipartFile(field_name="image", filename=filename, content_type=content_type, content=content)


async def fake_upload_variants(variants, filename, user_id=None, purpose="business-card"):
    return {
        name: StoredObject(
            key=f"images/{purpose}/{name}/{filename}",
            url=f"/api/v1/upload/files/images/{purpose}/{name}/{filename}",
            size=len(image.content),
            content_type=image.content_type,
        )
        for name, image in variants.items()
    }


@pytest.fixture
def storage():
    with patch("app.services.upload_service.storage_service") as mock_storage:
        mock_storage.backend = "local"
        mock_storage.upload_variants = AsyncMock(side_effect=fake_upload_variants)
        yield mock_storage


class TestImageUploadService:

    def setup_method(self):
        self.service = ImageUploadService()

    @pytest.mark.asyncio
    async def test_single_upload_variants(self, storage, make_image):
        response = await self.service.upload_single(as_file(make_image()), user_id="user-1")

        assert response.successful == 1
        assert response.storage_backend == "local"
        uploaded = response.files[0]
        assert set(uploaded.variants) == {"original", "ocr", "thumbnail", "web"}
        assert uploaded.variants["thumbnail"].width == 300
        assert uploaded.original_size > 0
        assert storage.upload_variants.await_args.kwargs["user_id"] == "user-1"

    @pytest.mark.asyncio
    async def test_single_upload_invalid(self, storage):
        with pytest.raises(ValidationError) as exc_info:
            await self.service.upload_single(as_file(b"not an image at all"))

        assert exc_info.value.field == "image"
        storage.upload_variants.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_multiple_upload_partial(self, storage, make_image):
        files = [
            as_file(make_image(), "front.jpg"),
            as_file(b"garbage", "broken.jpg"),
            as_file(make_image(fmt="PNG"), "back.png", "image/png"),
        ]

        response = await self.service.upload_multiple(files)

        assert response.total_files == 3
        assert response.successful == 2
        assert [r.filename for r in response.rejected] == ["broken.jpg"]
        assert response.rejected[0].errors
        assert storage.upload_variants.await_count == 2

    @pytest.mark.asyncio
    async def test_multiple_upload_too_many(self, storage, make_image):
        files = [as_file(b"x", f"{i}.jpg") for i in range(6)]

        with pytest.raises(ValidationError) as exc_info:
            await self.service.upload_multiple(files)

        assert exc_info.value.field == "images"
        storage.upload_variants.assert_not_awaited()
