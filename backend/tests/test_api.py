"""
Tests for API endpoints.
Uses httpx AsyncClient for testing FastAPI routes.
"""
from datetime import datetime, timedelta
from unittest.mock import MagicMock, patch

import pytest
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from pawstudio.config import settings
from pawstudio.models.auth_session import AuthSession
from pawstudio.models.credit_transaction import CreditTransaction
from pawstudio.models.image import Image
from pawstudio.models.photo import Photo
from pawstudio.models.scene import Scene
from pawstudio.models.user import User

from conftest import SOURCE_IMAGE_URL


class TestRootEndpoint:

    @pytest.mark.asyncio
    async def test_root_returns_info(self, client: AsyncClient):
        response = await client.get("/")

        assert response.status_code == 200
        data = response.json()
        assert data["message"] == "PawStudio API"
        assert "version" in data

    @pytest.mark.asyncio
    async def test_health(self, client: AsyncClient):
        response = await client.get("/api/health")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy", "database": "connected", "storage": "configured"}

    @pytest.mark.asyncio
    async def test_metrics_exposed(self, client: AsyncClient):
        await client.get("/")
        response = await client.get("/metrics")

        assert response.status_code == 200
        assert "http_requests_total" in response.text


class TestAuthentication:
    """Session resolution without the user override."""

    @pytest.mark.asyncio
    async def test_missing_token(self, anon_client: AsyncClient):
        response = await anon_client.get("/api/credits/balance")

        assert response.status_code == 401
        assert response.json()["error"] == "unauthenticated"

    @pytest.mark.asyncio
    async def test_bearer_token(self, anon_client: AsyncClient, auth_session: AuthSession):
        response = await anon_client.get(
            "/api/credits/balance",
            headers={"Authorization": f"Bearer {auth_session.token}"},
        )

        assert response.status_code == 200
        assert response.json()["credits"] == 10

    @pytest.mark.asyncio
    async def test_signed_session_cookie(self, anon_client: AsyncClient, auth_session: AuthSession):
        anon_client.cookies.set("pawstudio.session_token", f"{auth_session.token}.signature")

        response = await anon_client.get("/api/credits/balance")

        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_expired_session(self, anon_client: AsyncClient, db_session: AsyncSession, test_user: User):
        db_session.add(AuthSession(
            token="expired-token",
            user_id=test_user.id,
            expires_at=datetime.utcnow() - timedelta(minutes=1),
        ))
        await db_session.commit()

        response = await anon_client.get(
            "/api/credits/balance",
            headers={"Authorization": "Bearer expired-token"},
        )

        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_scenes_are_public(self, anon_client: AsyncClient, test_scene: Scene):
        response = await anon_client.get("/api/scenes")

        assert response.status_code == 200


class TestScenes:

    @pytest.mark.asyncio
    async def test_lists_active_scenes_without_prompt(self, client: AsyncClient, db_session: AsyncSession, test_scene: Scene):
        db_session.add(Scene(name="Hidden", prompt="hidden", is_active=False))
        await db_session.commit()

        response = await client.get("/api/scenes")

        data = response.json()
        assert data["success"] is True
        assert [s["name"] for s in data["scenes"]] == ["Studio Portrait"]
        assert "prompt" not in data["scenes"][0]


class TestProcessImage:

    @pytest.mark.asyncio
    async def test_process_success(self, client: AsyncClient, test_scene: Scene):
        response = await client.post(
            "/api/images/process",
            json={"imageUrl": SOURCE_IMAGE_URL, "filterId": test_scene.id},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["creditsRemaining"] == 9
        assert data["processedUrl"].startswith("https://cdn.paw-studio.com/")
        assert data["message"] == "Image processed successfully"

    @pytest.mark.asyncio
    async def test_process_insufficient_credits(self, broke_client: AsyncClient, test_scene: Scene, external_api):
        response = await broke_client.post(
            "/api/images/process",
            json={"imageUrl": SOURCE_IMAGE_URL, "filterId": test_scene.id},
        )

        assert response.status_code == 402
        assert response.json()["error"] == "insufficient_credits"
        assert external_api.submissions == []

    @pytest.mark.asyncio
    async def test_process_trial_user(self, trial_client: AsyncClient, test_scene: Scene):
        response = await trial_client.post(
            "/api/images/process",
            json={"imageUrl": SOURCE_IMAGE_URL, "filterId": test_scene.id},
        )

        assert response.status_code == 200
        assert response.json()["creditsRemaining"] == 0

    @pytest.mark.asyncio
    async def test_process_unknown_scene(self, client: AsyncClient):
        response = await client.post(
            "/api/images/process",
            json={"imageUrl": SOURCE_IMAGE_URL, "filterId": 4242},
        )

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_process_missing_fields(self, client: AsyncClient):
        response = await client.post("/api/images/process", json={"imageUrl": SOURCE_IMAGE_URL})

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_process_moderated(self, client: AsyncClient, test_scene: Scene, external_api):
        external_api.flux_statuses = ["Request Moderated"]

        response = await client.post(
            "/api/images/process",
            json={"imageUrl": SOURCE_IMAGE_URL, "filterId": test_scene.id},
        )

        assert response.status_code == 500
        assert response.json()["error"] == "content_moderated"


class TestUpload:

    @pytest.mark.asyncio
    async def test_upload_creates_photo_and_pending_image(self, client: AsyncClient, db_session: AsyncSession, test_user: User, external_api):
        response = await client.post(
            "/api/images/upload",
            files={"image": ("rex.png", b"\x89PNG-bytes", "image/png")},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["url"].endswith(".png")
        file_name = data["url"].replace("https://cdn.paw-studio.com/", "")
        assert file_name.startswith(f"{test_user.id}/uploads/")
        assert file_name in external_api.uploads

        image = await db_session.get(Image, data["imageId"])
        assert image.processing_status == "pending"
        assert image.filter_type == "none"
        photo = await db_session.get(Photo, data["photoId"])
        assert photo.original_filename == "rex.png"

    @pytest.mark.asyncio
    async def test_upload_rejects_non_image(self, client: AsyncClient, external_api):
        response = await client.post(
            "/api/images/upload",
            files={"image": ("notes.txt", b"hello", "text/plain")},
        )

        assert response.status_code == 400
        assert external_api.uploads == {}

    @pytest.mark.asyncio
    async def test_upload_rejects_oversize(self, client: AsyncClient, db_session: AsyncSession, test_user: User, external_api, monkeypatch):
        monkeypatch.setattr(settings, "max_upload_bytes", 8)

        response = await client.post(
            "/api/images/upload",
            files={"image": ("big.png", b"x" * 64, "image/png")},
        )

        assert response.status_code == 400
        assert response.json()["error"] == "validation_error"
        assert external_api.uploads == {}
        result = await db_session.execute(select(Photo).where(Photo.user_id == test_user.id))
        assert result.scalars().all() == []


class TestHistory:

    @pytest.mark.asyncio
    async def test_history_rewrites_legacy_urls(self, client: AsyncClient, db_session: AsyncSession, test_user: User, test_scene: Scene):
        db_session.add(Image(
            user_id=test_user.id,
            original_url="https://f005.backblazeb2.com/file/pawstudio/u/uploads/a.jpg",
            processed_url="https://cdn.paw-studio.com/u/generated/b.jpg",
            filter_type=str(test_scene.id),
            processing_status="completed",
            credits_used=1,
        ))
        await db_session.commit()

        response = await client.get("/api/images/history")

        data = response.json()
        assert data["total"] == 1
        item = data["images"][0]
        assert item["originalUrl"] == "https://cdn.paw-studio.com/u/uploads/a.jpg"
        assert item["processedUrl"] == "https://cdn.paw-studio.com/u/generated/b.jpg"
        assert item["filterName"] == "Studio Portrait"
        assert item["creditsUsed"] == 1

    @pytest.mark.asyncio
    async def test_history_only_own_images(self, client: AsyncClient, db_session: AsyncSession, broke_user: User):
        db_session.add(Image(user_id=broke_user.id, original_url="https://x/a.jpg", filter_type="none"))
        await db_session.commit()

        response = await client.get("/api/images/history")

        assert response.json()["images"] == []


class TestDeleteImage:

    @pytest.mark.asyncio
    async def test_delete_own_image(self, client: AsyncClient, db_session: AsyncSession, test_user: User, external_api):
        image = Image(
            user_id=test_user.id,
            original_url=SOURCE_IMAGE_URL,
            processed_url="https://cdn.paw-studio.com/u/generated/b.jpg",
            filter_type="1",
        )
        db_session.add(image)
        await db_session.commit()
        image_id = image.id

        response = await client.delete(f"/api/images/{image_id}")

        assert response.status_code == 200
        db_session.expire_all()
        assert await db_session.get(Image, image_id) is None

    @pytest.mark.asyncio
    async def test_delete_other_users_image(self, client: AsyncClient, db_session: AsyncSession, broke_user: User):
        image = Image(user_id=broke_user.id, original_url=SOURCE_IMAGE_URL, filter_type="none")
        db_session.add(image)
        await db_session.commit()

        response = await client.delete(f"/api/images/{image.id}")

        assert response.status_code == 404


class TestDownload:

    @pytest.mark.asyncio
    async def test_download_own_image_as_attachment(self, client: AsyncClient, test_user: User, external_api):
        file_name = f"{test_user.id}/generated/result.jpg"
        external_api.uploads[file_name] = {"content": b"jpeg-result", "content_type": "image/jpeg"}

        response = await client.get(
            "/api/images/download",
            params={"url": f"https://cdn.paw-studio.com/{file_name}", "filename": "rex-astronaut.jpg"},
        )

        assert response.status_code == 200
        assert response.content == b"jpeg-result"
        assert response.headers["content-type"] == "image/jpeg"
        assert response.headers["content-disposition"] == 'attachment; filename="rex-astronaut.jpg"'

    @pytest.mark.asyncio
    async def test_legacy_url_and_default_filename(self, client: AsyncClient, test_user: User, external_api):
        file_name = f"{test_user.id}/generated/old.jpg"
        external_api.uploads[file_name] = {"content": b"old"}

        response = await client.get(
            "/api/images/download",
            params={"url": f"https://f005.backblazeb2.com/file/pawstudio/{file_name}"},
        )

        assert response.status_code == 200
        assert response.content == b"old"
        assert 'filename="pawstudio-' in response.headers["content-disposition"]

    @pytest.mark.asyncio
    async def test_filename_sanitized(self, client: AsyncClient, test_user: User, external_api):
        file_name = f"{test_user.id}/generated/a.jpg"
        external_api.uploads[file_name] = {"content": b"a"}

        response = await client.get(
            "/api/images/download",
            params={"url": f"https://cdn.paw-studio.com/{file_name}", "filename": 'x"\r\nSet-Cookie: a.jpg'},
        )

        assert response.headers["content-disposition"] == 'attachment; filename="x___Set-Cookie__a.jpg"'

    @pytest.mark.asyncio
    async def test_other_users_file(self, client: AsyncClient, broke_user: User, external_api):
        file_name = f"{broke_user.id}/generated/theirs.jpg"
        external_api.uploads[file_name] = {"content": b"private"}

        response = await client.get(
            "/api/images/download", params={"url": f"https://cdn.paw-studio.com/{file_name}"}
        )

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_foreign_host_rejected(self, client: AsyncClient, test_user: User):
        response = await client.get(
            "/api/images/download", params={"url": f"http://169.254.169.254/{test_user.id}/secrets"}
        )

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_missing_file(self, client: AsyncClient, test_user: User):
        response = await client.get(
            "/api/images/download",
            params={"url": f"https://cdn.paw-studio.com/{test_user.id}/generated/gone.jpg"},
        )

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_requires_session(self, anon_client: AsyncClient):
        response = await anon_client.get(
            "/api/images/download", params={"url": "https://cdn.paw-studio.com/u/generated/a.jpg"}
        )

        assert response.status_code == 401


class TestPhotos:

    @pytest.mark.asyncio
    async def test_library_and_delete(self, client: AsyncClient, db_session: AsyncSession, test_user: User):
        photo = Photo(user_id=test_user.id, file_url="https://cdn.paw-studio.com/u/uploads/a.jpg", original_filename="a.jpg")
        db_session.add(photo)
        await db_session.commit()
        photo_id = photo.id

        library = await client.get("/api/photos/library")
        assert [p["id"] for p in library.json()["photos"]] == [photo_id]

        response = await client.delete(f"/api/photos/{photo_id}")
        assert response.status_code == 200

        library = await client.get("/api/photos/library")
        assert library.json()["photos"] == []


class TestCredits:

    @pytest.mark.asyncio
    async def test_balance(self, client: AsyncClient):
        response = await client.get("/api/credits/balance")

        assert response.json() == {"success": True, "credits": 10}

    @pytest.mark.asyncio
    async def test_transactions_after_generation(self, client: AsyncClient, test_scene: Scene):
        await client.post("/api/images/process", json={"imageUrl": SOURCE_IMAGE_URL, "filterId": test_scene.id})

        response = await client.get("/api/credits/transactions")

        transactions = response.json()["transactions"]
        assert len(transactions) == 1
        assert transactions[0]["amount"] == -1
        assert transactions[0]["type"] == "usage"

    @pytest.mark.asyncio
    async def test_packages(self, client: AsyncClient):
        response = await client.get("/api/credits/packages")

        packages = response.json()["packages"]
        assert [p["id"] for p in packages] == ["pack_5", "pack_10", "pack_25", "pack_50", "pack_100"]
        assert packages[0]["price_formatted"] == "$0.99"

    @pytest.mark.asyncio
    async def test_create_payment_intent(self, client: AsyncClient, test_user: User):
        intent = MagicMock(id="pi_123", client_secret="pi_123_secret")

        with patch("stripe.PaymentIntent.create", return_value=intent) as create:
            response = await client.post("/api/credits/create-payment-intent", json={"packageId": "pack_25"})

        assert response.status_code == 200
        assert response.json() == {
            "clientSecret": "pi_123_secret",
            "paymentIntentId": "pi_123",
            "amount": 399,
            "credits": 25,
        }
        metadata = create.call_args.kwargs["metadata"]
        assert metadata["userId"] == test_user.id
        assert metadata["credits"] == "25"

    @pytest.mark.asyncio
    async def test_create_payment_intent_unknown_package(self, client: AsyncClient):
        with patch("stripe.PaymentIntent.create") as create:
            response = await client.post("/api/credits/create-payment-intent", json={"packageId": "pack_7"})

        assert response.status_code == 400
        create.assert_not_called()


class TestAccount:

    @pytest.mark.asyncio
    async def test_profile(self, trial_client: AsyncClient, trial_user: User):
        response = await trial_client.get("/api/auth/profile")

        data = response.json()
        assert data["id"] == trial_user.id
        assert data["trialMode"] is True
        assert data["statistics"] == {"totalProcessed": 0, "totalPending": 0, "totalImages": 0}

    @pytest.mark.asyncio
    async def test_complete_trial(self, trial_client: AsyncClient, db_session: AsyncSession, trial_user: User):
        response = await trial_client.post("/api/auth/complete-trial")

        assert response.json() == {"success": True, "trialMode": False}
        await db_session.refresh(trial_user)
        assert trial_user.trial_mode is False

    @pytest.mark.asyncio
    async def test_delete_account_requires_confirmation(self, client: AsyncClient):
        response = await client.post("/api/auth/delete-account", json={"confirmation": "yes"})

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_delete_account(self, client: AsyncClient, db_session: AsyncSession, test_user: User, test_scene: Scene):
        user_id = test_user.id
        await client.post("/api/images/process", json={"imageUrl": SOURCE_IMAGE_URL, "filterId": test_scene.id})

        confirm = await client.post("/api/auth/delete-account", json={"confirmation": "DELETE MY ACCOUNT"})
        assert confirm.status_code == 200
        assert confirm.json()["summary"]["generatedImagesToDelete"] == 1

        response = await client.delete("/api/auth/delete-account")

        assert response.status_code == 200
        db_session.expire_all()
        assert await db_session.get(User, user_id) is None
        remaining = await db_session.execute(select(CreditTransaction).where(CreditTransaction.user_id == user_id))
        assert remaining.scalars().all() == []


class TestAdmin:

    @pytest.mark.asyncio
    async def test_non_admin_forbidden(self, client: AsyncClient):
        response = await client.get("/api/admin/stats")

        assert response.status_code == 403
        assert response.json()["error"] == "forbidden"

    @pytest.mark.asyncio
    async def test_scene_crud(self, admin_client: AsyncClient):
        created = await admin_client.post(
            "/api/admin/scenes",
            json={"name": "Astronaut", "prompt": "dog in a space suit", "credit_cost": 2},
        )
        assert created.status_code == 201
        scene_id = created.json()["scene"]["id"]

        updated = await admin_client.put(f"/api/admin/scenes/{scene_id}", json={"is_active": False})
        assert updated.json()["scene"]["is_active"] is False

        listing = await admin_client.get("/api/admin/scenes")
        assert scene_id in [s["id"] for s in listing.json()["scenes"]]

        deleted = await admin_client.delete(f"/api/admin/scenes/{scene_id}")
        assert deleted.json()["message"] == "Scene deleted successfully"

    @pytest.mark.asyncio
    async def test_used_scene_is_deactivated(self, admin_client: AsyncClient, db_session: AsyncSession, test_user: User, test_scene: Scene):
        db_session.add(Image(user_id=test_user.id, original_url=SOURCE_IMAGE_URL, filter_type=str(test_scene.id)))
        await db_session.commit()

        response = await admin_client.delete(f"/api/admin/scenes/{test_scene.id}")

        assert response.json()["message"] == "Scene deactivated (has existing usage)"
        await db_session.refresh(test_scene)
        assert test_scene.is_active is False

    @pytest.mark.asyncio
    async def test_update_user_credits(self, admin_client: AsyncClient, db_session: AsyncSession, test_user: User):
        response = await admin_client.patch(f"/api/admin/users/{test_user.id}", json={"credits": 25})

        assert response.status_code == 200
        assert response.json()["user"]["credits"] == 25
        result = await db_session.execute(
            select(CreditTransaction.amount).where(CreditTransaction.user_id == test_user.id)
        )
        assert result.scalars().all() == [15]

    @pytest.mark.asyncio
    async def test_cannot_delete_self(self, admin_client: AsyncClient, admin_user: User):
        response = await admin_client.delete(f"/api/admin/users/{admin_user.id}")

        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_stats(self, admin_client: AsyncClient, test_user: User, test_scene: Scene):
        response = await admin_client.get("/api/admin/stats")

        stats = response.json()["stats"]
        assert stats["totalUsers"] == 2
        assert stats["totalScenes"] == 1
        assert stats["activeScenes"] == 1
        assert stats["totalCreditsSpent"] == 0

    @pytest.mark.asyncio
    async def test_activity_feed(self, admin_client: AsyncClient, db_session: AsyncSession, test_user: User):
        db_session.add(CreditTransaction(user_id=test_user.id, amount=25, transaction_type="purchase",
                                         description="Purchased 25 Credits", external_payment_ref="pi_feed"))
        db_session.add(CreditTransaction(user_id=test_user.id, amount=-1, transaction_type="usage",
                                         description="Applied Studio Portrait scene"))
        await db_session.commit()

        response = await admin_client.get("/api/admin/activity")

        assert response.status_code == 200
        data = response.json()
        types = [event["type"] for event in data["activities"]]
        assert types.count("user_registered") == 2
        assert "credits_purchased" in types
        assert "credits_used" in types
        assert data["pagination"] == {"total": 4, "limit": 50, "offset": 0, "hasMore": False}
        purchase = next(e for e in data["activities"] if e["type"] == "credits_purchased")
        assert purchase["user_email"] == test_user.email
        assert purchase["description"] == "Purchased 25 credits"

    @pytest.mark.asyncio
    async def test_activity_filter_and_pagination(self, admin_client: AsyncClient, test_user: User):
        response = await admin_client.get("/api/admin/activity", params={"type": "user_registered", "limit": 1})

        data = response.json()
        assert [event["type"] for event in data["activities"]] == ["user_registered"]
        assert data["pagination"]["total"] == 2
        assert data["pagination"]["hasMore"] is True

    @pytest.mark.asyncio
    async def test_activity_unknown_type(self, admin_client: AsyncClient):
        response = await admin_client.get("/api/admin/activity", params={"type": "logins"})

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_activity_requires_admin(self, client: AsyncClient):
        response = await client.get("/api/admin/activity")

        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_scene_image_upload(self, admin_client: AsyncClient, db_session: AsyncSession, test_scene: Scene, external_api):
        response = await admin_client.post(
            "/api/admin/scenes/upload",
            files={"image": ("astronaut.webp", b"RIFF-webp", "image/webp")},
            data={"scene_id": str(test_scene.id)},
        )

        assert response.status_code == 200
        url = response.json()["url"]
        file_name = url.replace("https://cdn.paw-studio.com/", "")
        assert file_name.startswith("admin/scenes/")
        assert file_name.endswith(".webp")
        assert external_api.uploads[file_name]["content"] == b"RIFF-webp"
        await db_session.refresh(test_scene)
        assert test_scene.preview_image == url

    @pytest.mark.asyncio
    async def test_scene_image_upload_without_scene(self, admin_client: AsyncClient, external_api):
        response = await admin_client.post(
            "/api/admin/scenes/upload",
            files={"image": ("ref.png", b"png", "image/png")},
        )

        assert response.status_code == 200
        assert len(external_api.uploads) == 1

    @pytest.mark.asyncio
    async def test_scene_image_upload_validation(self, admin_client: AsyncClient, external_api, monkeypatch):
        not_image = await admin_client.post(
            "/api/admin/scenes/upload",
            files={"image": ("prompt.txt", b"text", "text/plain")},
        )
        assert not_image.status_code == 400

        monkeypatch.setattr(settings, "max_scene_image_bytes", 4)
        too_big = await admin_client.post(
            "/api/admin/scenes/upload",
            files={"image": ("big.png", b"x" * 32, "image/png")},
        )
        assert too_big.status_code == 400
        assert external_api.uploads == {}

    @pytest.mark.asyncio
    async def test_scene_image_upload_requires_admin(self, client: AsyncClient, external_api):
        response = await client.post(
            "/api/admin/scenes/upload",
            files={"image": ("ref.png", b"png", "image/png")},
        )

        assert response.status_code == 403
        assert external_api.uploads == {}
