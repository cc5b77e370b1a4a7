"""
Load testing with Locust.

Profiles are owned by the auth service, so the load test signs tokens for
existing profile IDs instead of registering accounts. Seed profiles first,
then run with:
    LOAD_TEST_USER_IDS=1-200 locust -f tests/load_test.py --host=http://localhost:8000

Then open http://localhost:8089 to start the test.
"""

import os
import random
import string
from locust import HttpUser, task, between

from app.core.security import create_access_token


def random_string(length=10):
    return ''.join(random.choices(string.ascii_lowercase, k=length))


def profile_ids():
    first, _, last = os.environ.get("LOAD_TEST_USER_IDS", "1-100").partition("-")
    return list(range(int(first), int(last or first) + 1))


PROFILE_IDS = profile_ids()


class AuthenticatedUser(HttpUser):
    abstract = True

    def on_start(self):
        """Pick a seeded profile and sign a token for it."""
        self.user_id = random.choice(PROFILE_IDS)
        token = create_access_token({"sub": str(self.user_id)})
        self.headers = {"Authorization": f"Bearer {token}"}

    def random_other(self):
        other = random.choice(PROFILE_IDS)
        while len(PROFILE_IDS) > 1 and other == self.user_id:
            other = random.choice(PROFILE_IDS)
        return other


class MessagingUser(AuthenticatedUser):
    """Simulates a user chatting in a handful of conversations."""

    wait_time = between(1, 3)  # Wait 1-3 seconds between tasks

    def on_start(self):
        super().on_start()
        self.conversation_ids = []

    @task(5)
    def start_conversation(self):
        response = self.client.post(
            "/conversations",
            json={"user_id": self.random_other()},
            headers=self.headers,
            name="/conversations [start]",
        )
        if response.status_code == 200:
            conversation_id = response.json()["id"]
            if conversation_id not in self.conversation_ids:
                self.conversation_ids.append(conversation_id)

    @task(10)
    def send_message(self):
        if self.conversation_ids:
            conversation_id = random.choice(self.conversation_ids)
            self.client.post(
                f"/conversations/{conversation_id}/messages",
                json={"content": f"Load test message {random_string(20)}"},
                headers=self.headers,
                name="/conversations/[id]/messages [send]",
            )

    @task(8)
    def list_conversations(self):
        """Inbox refresh - most common operation."""
        self.client.get("/conversations", headers=self.headers)

    @task(4)
    def read_conversation(self):
        if self.conversation_ids:
            conversation_id = random.choice(self.conversation_ids)
            self.client.get(
                f"/conversations/{conversation_id}/messages",
                headers=self.headers,
                name="/conversations/[id]/messages",
            )
            self.client.post(
                f"/conversations/{conversation_id}/read",
                headers=self.headers,
                name="/conversations/[id]/read",
            )

    @task(1)
    def request_deletion(self):
        """Occasionally ask to delete a conversation."""
        if self.conversation_ids:
            conversation_id = random.choice(self.conversation_ids)
            response = self.client.post(
                f"/conversations/{conversation_id}/deletion-request",
                headers=self.headers,
                name="/conversations/[id]/deletion-request",
            )
            if response.status_code == 200 and response.json()["deleted"]:
                self.conversation_ids.remove(conversation_id)


class FeedReader(AuthenticatedUser):
    """User that mostly reads feeds (more realistic for most users)."""

    wait_time = between(0.5, 2)

    @task(20)
    def get_home_feed(self):
        self.client.get("/feed/home", headers=self.headers)

    @task(5)
    def scroll_feed(self):
        """Paginate through the home feed."""
        response = self.client.get("/feed/home?limit=20", headers=self.headers)
        if response.status_code == 200:
            data = response.json()
            if data.get("next_cursor"):
                self.client.get(
                    f"/feed/home?cursor={data['next_cursor']}&limit=20",
                    headers=self.headers,
                    name="/feed/home [next page]",
                )

    @task(3)
    def view_profile_feed(self):
        self.client.get(
            f"/feed/user/{self.random_other()}",
            headers=self.headers,
            name="/feed/user/[id]",
        )

    @task(1)
    def create_post(self):
        """Occasionally create a post."""
        self.client.post(
            "/posts",
            json={
                "content": f"Feed reader post {random_string(10)}",
                "privacy": random.choice(["public", "followers"]),
            },
            headers=self.headers,
        )
