"""错误分类

全部是可恢复错误：最坏情况是错过一次提醒或一次回复失败，调度循环本身不会因此退出。
"""


class ChimeError(Exception):
    """所有引擎错误的基类"""


class FetchFailure(ChimeError):
    """提醒列表全量拉取失败，等待下一次触发时重试，不提示用户"""


class PlaybackBlocked(ChimeError):
    """运行环境拒绝自动播放提示音，转换为一次提示，由用户手动解锁"""


class StaleSubmission(ChimeError):
    """提交的 reminder_id 与闸门中正在回复的提醒不一致(或闸门不在回复状态)"""

    def __init__(self, reminder_id: str, held_id: str | None, state: str) -> None:
        super().__init__(
            f"提交与当前提醒不匹配: reminder_id={reminder_id}, held={held_id}, state={state}"
        )
        self.reminder_id = reminder_id
        self.held_id = held_id
        self.state = state


class SubmissionInProgress(ChimeError):
    """已有一次回复提交正在进行"""


class AttachmentUploadFailure(ChimeError):
    """单个附件上传失败，提交会跳过该附件继续进行"""

    def __init__(self, filename: str, reason: str) -> None:
        super().__init__(f"附件上传失败: {filename}: {reason}")
        self.filename = filename


class ResponsePersistFailure(ChimeError):
    """回复记录写入失败，展示给用户，闸门保持回复状态以便重试"""


__all__ = [
    "ChimeError",
    "FetchFailure",
    "PlaybackBlocked",
    "StaleSubmission",
    "SubmissionInProgress",
    "AttachmentUploadFailure",
    "ResponsePersistFailure",
]
