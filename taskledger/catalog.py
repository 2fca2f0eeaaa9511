import logging
from decimal import Decimal

from .exceptions import InvalidInputError, TaskNotFoundError
from .models import Task
from .storage import InMemoryStorage

logger = logging.getLogger(__name__)

DEMO_TASKS = (
    {"title": "Visit our Blogger site", "reward": Decimal("10"), "link": "https://yourblog.blogspot.com"},
    {"title": "Join Telegram Channel", "reward": Decimal("15"), "link": "https://t.me/yourchannel"},
    {"title": "Watch Ad", "reward": Decimal("5"), "link": "#"},
)


class TaskCatalog:
    def __init__(self, storage: InMemoryStorage):
        self.storage = storage

    def list_tasks(self) -> list[Task]:
        return [Task(**self.storage.tasks[task_id]) for task_id in sorted(list(self.storage.tasks))]

    def get_task(self, task_id: int) -> Task:
        task_data = self.storage.tasks.get(task_id)
        if not task_data:
            raise TaskNotFoundError(f"Task {task_id} not found", details={"task_id": task_id})
        return Task(**task_data)

    def add_task(self, title: str, reward: Decimal, link: str = "#") -> Task:
        reward = Decimal(reward)
        if not reward.is_finite():
            raise InvalidInputError("Task reward must be a finite number", details={"reward": str(reward)})
        if reward < 0:
            raise InvalidInputError("Task reward cannot be negative", details={"reward": str(reward)})
        if not title or not title.strip():
            raise InvalidInputError("Task title is required")

        with self.storage.catalog_lock:
            task = self._insert(title.strip(), reward, link or "#")

        logger.info("Added task %s (%s, reward %s)", task.id, task.title, task.reward)
        return task

    def seed_if_empty(self) -> bool:
        """Populate the demo tasks when the catalog is empty; returns True if it did."""
        with self.storage.catalog_lock:
            if self.storage.tasks:
                return False
            for demo in DEMO_TASKS:
                self._insert(demo["title"], demo["reward"], demo["link"])

        logger.info("Demo tasks created")
        return True

    def _insert(self, title: str, reward: Decimal, link: str) -> Task:
        task_id = max(self.storage.tasks, default=0) + 1
        task_data = {"id": task_id, "title": title, "reward": reward, "link": link}
        self.storage.tasks[task_id] = task_data
        return Task(**task_data)
