import os
import random
import uuid

from locust import HttpUser, between, task

GALLERY_ID = os.environ.get("LOCUST_GALLERY_ID", str(uuid.uuid4()))
TOKEN = os.environ.get("LOCUST_TOKEN")


class UploaderUser(HttpUser):
    """Grant requests and warm-ups as an uploading photographer produces them."""

    wait_time = between(1, 3)

    def on_start(self):
        if TOKEN:
            self.client.headers.update({"Authorization": f"Bearer {TOKEN}"})
        self.client.head("/api/uploads/warm")

    @task(5)
    def warm(self):
        self.client.head("/api/uploads/warm", name="/api/uploads/warm")

    @task(2)
    def request_grants(self):
        files = [
            {
                "localId": uuid.uuid4().hex,
                "mimeType": "image/jpeg",
                "fileSizeBytes": random.randint(500_000, 8_000_000),
                "originalFilename": f"IMG_{random.randint(1000, 9999)}.jpg",
            }
            for _ in range(random.randint(1, 50))
        ]
        self.client.post("/api/uploads/grants", json={"galleryId": GALLERY_ID, "files": files})

    @task(1)
    def archive_status(self):
        self.client.get(f"/api/galleries/{GALLERY_ID}/archive", name="/api/galleries/[id]/archive")

    @task(1)
    def health_check(self):
        self.client.get("/health")
