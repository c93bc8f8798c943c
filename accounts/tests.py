import shutil
import tempfile

from django.core.files.uploadedfile import SimpleUploadedFile
from django.test import override_settings
from rest_framework import status
from rest_framework.test import APITestCase

from accounts.models import User


def make_user(email, password="Pass12345!", role=User.Role.EMPLOYEE, status_=User.Status.APPROVED, **extra):
    return User.objects.create_user(
        username=email,
        email=email,
        password=password,
        full_name=extra.pop("full_name", email.split("@")[0]),
        role=role,
        status=status_,
        **extra,
    )


class AuthTests(APITestCase):
    def setUp(self):
        self.admin = make_user("admin1@test.com", role=User.Role.ADMIN, status_=User.Status.PENDING, full_name="Admin")
        self.employee = make_user("employee1@test.com", full_name="Employee One")
        self.pending = make_user("pending@test.com", status_=User.Status.PENDING)
        self.rejected = make_user("rejected@test.com", status_=User.Status.REJECTED)

        # URLs
        self.register_url = "/api/users/register/"
        self.login_url = "/api/auth/login/"
        self.refresh_url = "/api/auth/refresh/"
        self.me_url = "/api/auth/me/"

    def login(self, email, password="Pass12345!"):
        return self.client.post(self.login_url, {"email": email, "password": password}, format="json")

    def auth_as(self, email, password="Pass12345!"):
        res = self.login(email, password)
        self.assertEqual(res.status_code, status.HTTP_200_OK)
        self.client.credentials(HTTP_AUTHORIZATION=f"Bearer {res.data['access']}")
        return res.data

    def test_register_creates_pending_employee(self):
        payload = {
            "full_name": "New Person",
            "email": "New@Test.com",
            "password": "secret1",
            "birthday": "1995-04-02",
        }
        res = self.client.post(self.register_url, payload, format="json")
        self.assertEqual(res.status_code, status.HTTP_201_CREATED)

        user = User.objects.get(email="new@test.com")
        self.assertEqual(user.status, User.Status.PENDING)
        self.assertEqual(user.role, User.Role.EMPLOYEE)
        self.assertTrue(user.check_password("secret1"))

    def test_register_duplicate_email_rejected(self):
        payload = {"full_name": "Dup", "email": "EMPLOYEE1@test.com", "password": "secret1", "birthday": "1990-01-01"}
        res = self.client.post(self.register_url, payload, format="json")
        self.assertEqual(res.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn("email", res.data)

    def test_register_short_password_rejected(self):
        payload = {"full_name": "Short", "email": "short@test.com", "password": "abc", "birthday": "1990-01-01"}
        res = self.client.post(self.register_url, payload, format="json")
        self.assertEqual(res.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn("password", res.data)

    def test_login_returns_tokens_and_user(self):
        res = self.login("employee1@test.com")
        self.assertEqual(res.status_code, status.HTTP_200_OK)
        self.assertIn("access", res.data)
        self.assertIn("refresh", res.data)
        self.assertEqual(res.data["user"]["role"], User.Role.EMPLOYEE)
        self.assertEqual(res.data["user"]["full_name"], "Employee One")

    def test_login_wrong_password(self):
        res = self.login("employee1@test.com", "nope")
        self.assertEqual(res.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_pending_and_rejected_cannot_login(self):
        res = self.login("pending@test.com")
        self.assertEqual(res.status_code, status.HTTP_401_UNAUTHORIZED)
        self.assertEqual(str(res.data["detail"]), "Account is pending admin approval.")

        res = self.login("rejected@test.com")
        self.assertEqual(res.status_code, status.HTTP_401_UNAUTHORIZED)
        self.assertEqual(str(res.data["detail"]), "Account access has been rejected.")

    def test_admin_passes_regardless_of_status(self):
        res = self.login("admin1@test.com")
        self.assertEqual(res.status_code, status.HTTP_200_OK)
        self.assertEqual(res.data["user"]["role"], User.Role.ADMIN)

    def test_me_requires_auth(self):
        res = self.client.get(self.me_url)
        self.assertEqual(res.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_me_returns_current_user(self):
        self.auth_as("employee1@test.com")
        res = self.client.get(self.me_url)
        self.assertEqual(res.status_code, status.HTTP_200_OK)
        self.assertEqual(res.data["email"], "employee1@test.com")
        self.assertEqual(res.data["profile_picture_url"], "")

    def test_refresh_returns_new_access(self):
        refresh = self.login("employee1@test.com").data["refresh"]
        res = self.client.post(self.refresh_url, {"refresh": refresh}, format="json")
        self.assertEqual(res.status_code, status.HTTP_200_OK)
        self.assertIn("access", res.data)


class ProfileTests(APITestCase):
    def setUp(self):
        self.user = make_user("employee1@test.com", full_name="Employee One")
        self.client.force_authenticate(user=self.user)

    def test_update_name_and_set_birthday_once(self):
        res = self.client.put("/api/users/profile/", {"full_name": "Renamed", "birthday": "1990-05-05"}, format="json")
        self.assertEqual(res.status_code, status.HTTP_200_OK)
        self.assertEqual(res.data["full_name"], "Renamed")
        self.assertEqual(res.data["birthday"], "1990-05-05")

        res = self.client.put("/api/users/profile/", {"birthday": "2000-01-01"}, format="json")
        self.assertEqual(res.status_code, status.HTTP_200_OK)
        self.user.refresh_from_db()
        self.assertEqual(str(self.user.birthday), "1990-05-05")

    def test_change_password(self):
        url = "/api/users/change-password/"
        res = self.client.put(url, {"current_password": "wrong", "new_password": "newpass1"}, format="json")
        self.assertEqual(res.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn("current_password", res.data)

        res = self.client.put(url, {"current_password": "Pass12345!", "new_password": "abc"}, format="json")
        self.assertEqual(res.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn("new_password", res.data)

        res = self.client.put(url, {"current_password": "Pass12345!", "new_password": "newpass1"}, format="json")
        self.assertEqual(res.status_code, status.HTTP_200_OK)
        self.user.refresh_from_db()
        self.assertTrue(self.user.check_password("newpass1"))


class ProfilePictureTests(APITestCase):
    def setUp(self):
        self.user = make_user("employee1@test.com")
        self.client.force_authenticate(user=self.user)
        self.media_root = tempfile.mkdtemp()
        self.override = override_settings(MEDIA_ROOT=self.media_root)
        self.override.enable()

    def tearDown(self):
        self.override.disable()
        shutil.rmtree(self.media_root, ignore_errors=True)

    def test_upload_picture(self):
        image = SimpleUploadedFile("me.jpg", b"\xff\xd8\xff\xe0fake", content_type="image/jpeg")
        res = self.client.post("/api/users/upload-picture/", {"profile_picture": image}, format="multipart")
        self.assertEqual(res.status_code, status.HTTP_200_OK)
        self.assertIn("/uploads/profiles/", res.data["profile_picture_url"])

    def test_rejects_non_image_and_large_files(self):
        doc = SimpleUploadedFile("cv.pdf", b"%PDF", content_type="application/pdf")
        res = self.client.post("/api/users/upload-picture/", {"profile_picture": doc}, format="multipart")
        self.assertEqual(res.status_code, status.HTTP_400_BAD_REQUEST)

        big = SimpleUploadedFile("big.png", b"0" * 1_000_001, content_type="image/png")
        res = self.client.post("/api/users/upload-picture/", {"profile_picture": big}, format="multipart")
        self.assertEqual(res.status_code, status.HTTP_400_BAD_REQUEST)


class AdminUserManagementTests(APITestCase):
    def results(self, res):
        return res.data["results"] if isinstance(res.data, dict) and "results" in res.data else res.data

    def setUp(self):
        self.admin = make_user("admin1@test.com", role=User.Role.ADMIN, full_name="Admin")
        self.other_admin = make_user("admin2@test.com", role=User.Role.ADMIN, full_name="Admin Two")
        self.zaw = make_user("zaw@test.com", full_name="Zaw")
        self.aung = make_user("aung@test.com", full_name="Aung")
        self.pending = make_user("pending@test.com", status_=User.Status.PENDING, full_name="Pending")

    def test_employee_cannot_use_admin_endpoints(self):
        self.client.force_authenticate(user=self.zaw)
        self.assertEqual(self.client.get("/api/users/").status_code, status.HTTP_403_FORBIDDEN)
        self.assertEqual(self.client.get("/api/users/pending/").status_code, status.HTTP_403_FORBIDDEN)
        res = self.client.put(f"/api/users/{self.pending.id}/approve/")
        self.assertEqual(res.status_code, status.HTTP_403_FORBIDDEN)

    def test_list_employees_sorted_by_name(self):
        self.client.force_authenticate(user=self.admin)
        res = self.client.get("/api/users/")
        self.assertEqual(res.status_code, status.HTTP_200_OK)
        self.assertEqual([u["full_name"] for u in self.results(res)], ["Aung", "Zaw"])

    def test_pending_list_and_approve(self):
        self.client.force_authenticate(user=self.admin)
        res = self.client.get("/api/users/pending/")
        self.assertEqual([u["id"] for u in self.results(res)], [self.pending.id])

        res = self.client.put(f"/api/users/{self.pending.id}/approve/")
        self.assertEqual(res.status_code, status.HTTP_200_OK)
        self.pending.refresh_from_db()
        self.assertEqual(self.pending.status, User.Status.APPROVED)

        res = self.client.put(f"/api/users/{self.pending.id}/approve/")
        self.assertEqual(res.status_code, status.HTTP_400_BAD_REQUEST)

    def test_decline(self):
        self.client.force_authenticate(user=self.admin)
        res = self.client.put(f"/api/users/{self.zaw.id}/decline/")
        self.assertEqual(res.status_code, status.HTTP_200_OK)
        self.zaw.refresh_from_db()
        self.assertEqual(self.zaw.status, User.Status.REJECTED)

        # a declined token holder is locked out of employee endpoints
        self.client.force_authenticate(user=self.zaw)
        res = self.client.get("/api/subcategories/")
        self.assertEqual(res.status_code, status.HTTP_403_FORBIDDEN)

    def test_cannot_change_admin_status(self):
        self.client.force_authenticate(user=self.admin)
        res = self.client.put(f"/api/users/{self.other_admin.id}/decline/")
        self.assertEqual(res.status_code, status.HTTP_400_BAD_REQUEST)

    def test_delete_rules(self):
        self.client.force_authenticate(user=self.admin)
        res = self.client.delete(f"/api/users/{self.other_admin.id}/")
        self.assertEqual(res.status_code, status.HTTP_403_FORBIDDEN)

        res = self.client.delete(f"/api/users/{self.zaw.id}/")
        self.assertEqual(res.status_code, status.HTTP_200_OK)
        self.assertFalse(User.objects.filter(id=self.zaw.id).exists())

    def test_chat_list(self):
        self.client.force_authenticate(user=self.admin)
        res = self.client.get("/api/users/chat-list/")
        self.assertEqual([u["full_name"] for u in res.data], ["Aung", "Zaw"])

        self.client.force_authenticate(user=self.zaw)
        res = self.client.get("/api/users/chat-list/")
        self.assertEqual([u["full_name"] for u in res.data], ["Admin", "Admin Two"])
