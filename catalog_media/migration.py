"""旧图片数据清理 + CDN 就绪检查的一次性迁移任务。

阶段严格线性执行，任一阶段失败即放弃后续阶段，不自动重试，也不回滚已提交的删除：

    CheckConfig → TestConnection → Inventory →（无数据则结束）→ Sample → Purge
    → VerifyPurge → SmokeTestUpload → SmokeTestDelete → Done

删除前必须经过 confirm 回调确认；dry_run 在 Sample 之后结束，不做任何修改。
"""
import base64
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional

from sqlalchemy.orm import Session

from .cdn import CdnStorage
from .exceptions import ConfigurationError, MigrationError, StorageTransportError
from .images import count_images, count_products_with_images, is_valid_url, purge_images, sample_images


logger = logging.getLogger(__name__)

SMOKE_TEST_KEY = "migration-test/connection-test.png"
SMOKE_TEST_CONTENT_TYPE = "image/png"
# 1x1 像素 PNG
SMOKE_TEST_IMAGE = base64.b64decode(
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mNkYPhfDwAChwGA60e6kgAAAABJRU5ErkJggg=="
)
SAMPLE_SIZE = 5


class Phase(str, Enum):
    CHECK_CONFIG = "CheckConfig"
    TEST_CONNECTION = "TestConnection"
    INVENTORY = "Inventory"
    SAMPLE = "Sample"
    PURGE = "Purge"
    VERIFY_PURGE = "VerifyPurge"
    SMOKE_TEST_UPLOAD = "SmokeTestUpload"
    SMOKE_TEST_DELETE = "SmokeTestDelete"
    DONE = "Done"


class Outcome(str, Enum):
    COMPLETED = "completed"
    NOTHING_TO_DO = "nothing_to_do"
    DRY_RUN = "dry_run"
    DECLINED = "declined"


@dataclass
class SampleEntry:
    product_id: int
    product_title: Optional[str]
    storage_key: str
    url: str
    size_variant: str


@dataclass
class MigrationReport:
    outcome: Optional[Outcome] = None
    phases: List[Phase] = field(default_factory=list)
    total_images: int = 0
    products_with_images: int = 0
    samples: List[SampleEntry] = field(default_factory=list)
    deleted: int = 0
    remaining_images: Optional[int] = None
    remaining_products: Optional[int] = None
    smoke_test_url: Optional[str] = None

    @property
    def purge_incomplete(self) -> bool:
        return bool(self.remaining_images)


ProgressCallback = Callable[[Phase, str], None]
ConfirmCallback = Callable[[MigrationReport], bool]


def _noop_progress(phase: Phase, message: str) -> None:
    pass


class MigrationJob:
    def __init__(
        self,
        db: Session,
        storage: CdnStorage,
        *,
        confirm: ConfirmCallback,
        dry_run: bool = False,
        progress: Optional[ProgressCallback] = None,
    ):
        self.db = db
        self.storage = storage
        self.confirm = confirm
        self.dry_run = dry_run
        self.progress = progress or _noop_progress
        self.report = MigrationReport()

    def _enter(self, phase: Phase, message: str) -> None:
        logger.info(f"[{phase.value}] {message}")
        self.progress(phase, message)

    def _finish(self, phase: Phase) -> None:
        self.report.phases.append(phase)

    def run(self) -> MigrationReport:
        phase = Phase.CHECK_CONFIG
        try:
            self._enter(phase, "检查 CDN 存储配置")
            if not self.storage.is_configured():
                raise ConfigurationError(
                    "CDN 存储未正确配置，请设置 STORAGE_URL、STORAGE_SERVER_BASE_URL、STORAGE_SERVER_ACCESS_KEY"
                )
            self._finish(phase)

            phase = Phase.TEST_CONNECTION
            self._enter(phase, "测试 CDN 连通性")
            probe = self.storage.probe()
            if not probe.success:
                raise StorageTransportError(
                    f"CDN 连接失败: {probe.error}", status_code=probe.status, operation="probe"
                )
            self._finish(phase)

            phase = Phase.INVENTORY
            self._enter(phase, "统计现有图片数据")
            self.report.total_images = count_images(self.db)
            self.report.products_with_images = count_products_with_images(self.db)
            self._finish(phase)
            if self.report.total_images == 0:
                self.report.outcome = Outcome.NOTHING_TO_DO
                return self.report

            phase = Phase.SAMPLE
            self._enter(phase, "抽样展示现有图片数据")
            for image in sample_images(self.db, SAMPLE_SIZE):
                self.report.samples.append(
                    SampleEntry(
                        product_id=image.product_id,
                        product_title=image.product.title if image.product else None,
                        storage_key=image.storage_key,
                        url=image.url,
                        size_variant=image.size_variant,
                    )
                )
            self._finish(phase)
            if self.dry_run:
                self.report.outcome = Outcome.DRY_RUN
                return self.report

            phase = Phase.PURGE
            if not self.confirm(self.report):
                self.report.outcome = Outcome.DECLINED
                return self.report
            self._enter(phase, "删除全部图片记录")
            self.report.deleted = purge_images(self.db)
            self._finish(phase)

            phase = Phase.VERIFY_PURGE
            self._enter(phase, "校验清理结果")
            self.report.remaining_images = count_images(self.db)
            self.report.remaining_products = count_products_with_images(self.db)
            if self.report.remaining_images:
                logger.warning(f"清理后仍有 {self.report.remaining_images} 条图片记录")
            self._finish(phase)

            phase = Phase.SMOKE_TEST_UPLOAD
            self._enter(phase, "测试 CDN 上传")
            result = self.storage.upload(SMOKE_TEST_IMAGE, SMOKE_TEST_KEY, SMOKE_TEST_CONTENT_TYPE)
            if not is_valid_url(result.url):
                raise StorageTransportError(
                    f"测试上传返回的URL无效: {result.url}", operation="put", key=SMOKE_TEST_KEY
                )
            self.report.smoke_test_url = result.url
            self._finish(phase)

            phase = Phase.SMOKE_TEST_DELETE
            self._enter(phase, "清理测试文件")
            self.storage.delete(SMOKE_TEST_KEY)
            self._finish(phase)
        except Exception as e:
            logger.error(f"迁移在 {phase.value} 阶段失败: {e}")
            raise MigrationError(phase.value, e) from e

        self._enter(Phase.DONE, "迁移完成")
        self._finish(Phase.DONE)
        self.report.outcome = Outcome.COMPLETED
        return self.report
