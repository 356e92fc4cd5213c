"""回复提交

闸门处于 responding 状态时，收集文字与附件并写入外部存储，成功后闸门回到 empty。

- reminder_id 必须与闸门当前持有的提醒一致，否则 StaleSubmission，闸门不变；
- 附件逐个上传，单个失败只跳过该附件；
- 回复记录写入失败时抛出 ResponsePersistFailure，闸门保持 responding，用户可直接重试。
"""

from typing import Callable, Iterable, List

from ulid import ULID

from chime.core.gate import PresentationGate
from chime.core.identity import SessionIdentity
from chime.core.interfaces import ResponseSink
from chime.datamodel import Attachment, GateState, Notice, ReminderResponse, ResponseResult
from chime.errors import (
    AttachmentUploadFailure,
    ResponsePersistFailure,
    StaleSubmission,
    SubmissionInProgress,
)
from chime.logger import logger
from chime.metrics import runtime_metrics

__all__ = ["ResponseSubmissionFlow"]


class ResponseSubmissionFlow:
    def __init__(
        self,
        gate: PresentationGate,
        sink: ResponseSink,
        identity: SessionIdentity,
        notify: Callable[[Notice], None] | None = None,
    ) -> None:
        self.gate = gate
        self.sink = sink
        self.identity = identity
        self.notify = notify
        self._submitting = False

    @property
    def is_submitting(self) -> bool:
        return self._submitting

    def _check_held(self, reminder_id: str) -> None:
        if self.gate.state is not GateState.RESPONDING or self.gate.held_id != reminder_id:
            raise StaleSubmission(reminder_id, self.gate.held_id, self.gate.state.value)

    async def submit(
        self,
        reminder_id: str,
        text: str,
        files: Iterable[Attachment] = (),
    ) -> ResponseResult:
        self._check_held(reminder_id)
        if self._submitting:
            raise SubmissionInProgress(f"回复正在提交中: reminder_id={reminder_id}")

        responder_id = self.identity.current_identity()
        if responder_id is None:
            raise StaleSubmission(reminder_id, self.gate.held_id, self.gate.state.value)

        self._submitting = True
        try:
            urls, skipped = await self._upload_all(responder_id, list(files))
            response = ReminderResponse(
                reminder_id=reminder_id,
                responder_id=responder_id,
                text=text,
                attachment_urls=urls,
            )
            try:
                response_id = await self.sink.insert_response(response)
            except Exception as e:
                runtime_metrics.record_response(error=True)
                logger.error(f"回复写入失败: reminder_id={reminder_id}, error={e}")
                self._notify("error", "Error", str(e) or "Failed to submit response.")
                raise ResponsePersistFailure(str(e) or "回复写入失败") from e
        finally:
            self._submitting = False

        runtime_metrics.record_response()
        logger.info(
            f"回复已提交: reminder_id={reminder_id}, response_id={response_id}, "
            f"attachments={len(urls)}, skipped={len(skipped)}"
        )
        self.gate.complete(reminder_id)
        self._notify("success", "Response Sent", "Your response has been submitted successfully.")
        return ResponseResult(response=response, response_id=response_id, skipped_files=skipped)

    async def _upload_all(self, owner_id: str, files: List[Attachment]) -> tuple[List[str], List[str]]:
        urls: List[str] = []
        skipped: List[str] = []
        for attachment in files:
            try:
                urls.append(await self._upload_one(owner_id, attachment))
            except AttachmentUploadFailure as e:
                runtime_metrics.record_attachment_error()
                logger.warning(str(e))
                skipped.append(attachment.filename)
        return urls, skipped

    async def _upload_one(self, owner_id: str, attachment: Attachment) -> str:
        # ULID 以毫秒时间戳开头，同一毫秒内的同名附件也不会互相覆盖
        name = f"{ULID()}_{attachment.filename}"
        try:
            return await self.sink.upload_file(owner_id, name, attachment.content)
        except Exception as e:
            raise AttachmentUploadFailure(attachment.filename, str(e)) from e

    def _notify(self, type_: str, title: str, message: str) -> None:
        if self.notify is not None:
            self.notify(Notice(type=type_, title=title, message=message))
