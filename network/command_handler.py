import logging
import os
from typing import Callable, Optional

from core.errors import GlimpseError
from core.session_database import generate_session_id
from core.session_service import GlimpseService
from network import protocol

logger = logging.getLogger(__name__)

_ValidationErrors = (ValueError, TypeError, KeyError)

THUMBNAIL_PROGRESS = "thumbnail-progress"
THUMBNAILS_COMPLETE = "thumbnails-complete"


class CommandHandler:
    """
    Adapts GlimpseService to JSON request/response messages.

    Every command answers with a success payload or an ErrorResponse carrying
    one human-readable message. Progress and completion of the thumbnail
    batch started by ``open_folder`` are pushed through ``notify`` as
    serialised Notification messages.
    """

    def __init__(self, service: GlimpseService, notify: Optional[Callable[[str], None]] = None):
        self.service = service
        self.notify = notify
        self._handlers = {
            "open_folder": self._open_folder,
            "get_session": self._get_session,
            "set_label": self._set_label,
            "get_label": self._get_label,
            "get_labels": self._get_labels,
            "get_rejected_filenames": self._get_rejected_filenames,
            "save_selection": self._save_selection,
            "export": self._export,
            "get_thumbnail_path": self._get_thumbnail_path,
            "get_preview_path": self._get_preview_path,
            "get_exif": self._get_exif,
            "clear_cache": self._clear_cache,
            "clear_all_cache": self._clear_all_cache,
            "forget_session": self._forget_session,
            "clear_all_labels": self._clear_all_labels,
            "get_storage_info": self._get_storage_info,
            "get_system_info": self._get_system_info,
            "set_thread_count": self._set_thread_count,
        }

    def handle_request(self, request_data: dict) -> str:
        """Dispatch one decoded request; always returns a JSON response string."""
        try:
            command = request_data.get("command") if isinstance(request_data, dict) else None
            if not command:
                return protocol.ErrorResponse(message="Request missing 'command' field.").model_dump_json()

            handler = self._handlers.get(command)
            if handler is None:
                return protocol.ErrorResponse(message=f"Unknown command: {command}").model_dump_json()

            return handler(request_data).model_dump_json()

        except GlimpseError as e:
            logger.warning(f"Command '{request_data.get('command')}' failed: {e}")
            return protocol.ErrorResponse(message=str(e)).model_dump_json()
        except OSError as e:
            logger.warning(f"Command '{request_data.get('command')}' failed: {e}")
            return protocol.ErrorResponse(message=str(e)).model_dump_json()
        except _ValidationErrors as e:
            return protocol.ErrorResponse(message=f"Validation Error: {e}").model_dump_json()
        except Exception as e:  # why: any unhandled error from handler dispatch must not crash the caller's loop
            logger.error(f"Error processing request: {e}", exc_info=True)
            return protocol.ErrorResponse(message=f"Internal Server Error: {str(e)}").model_dump_json()

    def _send(self, notification: protocol.Notification):
        if self.notify is None:
            return
        try:
            self.notify(notification.model_dump_json())
        except Exception as e:  # why: the notify sink is caller-supplied; a broken sink must not stall the batch
            logger.error(f"Failed to deliver {notification.type} notification: {e}", exc_info=True)

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def _open_folder(self, request_data: dict) -> protocol.Response:
        req = protocol.OpenFolderRequest.model_validate(request_data)
        if not req.folder_path:
            raise ValueError("open_folder requires a non-empty folder_path")

        # Session ids are deterministic, so notifications can be addressed before the open returns.
        session_id = generate_session_id(os.path.abspath(req.folder_path))

        def on_progress(completed: int, total: int):
            self._send(protocol.Notification(
                type=THUMBNAIL_PROGRESS,
                data=protocol.ThumbnailProgressData(completed=completed, total=total).model_dump(),
                session_id=session_id,
            ))

        def on_complete(results):
            data = protocol.ThumbnailsCompleteData(
                results=[protocol.ThumbnailResultModel.from_model(r) for r in results])
            self._send(protocol.Notification(
                type=THUMBNAILS_COMPLETE, data=data.model_dump(), session_id=session_id,
            ))

        result = self.service.open_folder(req.folder_path, on_progress=on_progress, on_complete=on_complete)
        return protocol.OpenFolderResponse(
            session_id=result.session.id,
            images=[protocol.ImageEntryModel.from_model(i) for i in result.images],
            labels=[protocol.LabelModel.from_model(label) for label in result.labels],
            last_selected_index=result.last_selected_index,
            cache_dir=result.cache_dir,
        )

    def _get_session(self, request_data: dict) -> protocol.Response:
        req = protocol.GetSessionRequest.model_validate(request_data)
        session = self.service.get_session(req.session_id)
        return protocol.GetSessionResponse(session=protocol.SessionModel.from_model(session))

    def _set_label(self, request_data: dict) -> protocol.Response:
        req = protocol.SetLabelRequest.model_validate(request_data)
        self.service.set_label(req.filename, req.label, session_id=req.session_id)
        return protocol.Response()

    def _get_label(self, request_data: dict) -> protocol.Response:
        req = protocol.GetLabelRequest.model_validate(request_data)
        label = self.service.get_label(req.filename, session_id=req.session_id)
        return protocol.GetLabelResponse(filename=req.filename, label=label)

    def _get_labels(self, request_data: dict) -> protocol.Response:
        req = protocol.GetLabelsRequest.model_validate(request_data)
        labels = self.service.get_labels(req.session_id)
        return protocol.GetLabelsResponse(labels=[protocol.LabelModel.from_model(label) for label in labels])

    def _get_rejected_filenames(self, request_data: dict) -> protocol.Response:
        req = protocol.GetRejectedFilenamesRequest.model_validate(request_data)
        return protocol.GetRejectedFilenamesResponse(
            filenames=self.service.get_rejected_filenames(req.session_id))

    def _save_selection(self, request_data: dict) -> protocol.Response:
        req = protocol.SaveSelectionRequest.model_validate(request_data)
        self.service.save_selection(int(req.index), session_id=req.session_id)
        return protocol.Response()

    def _export(self, request_data: dict) -> protocol.Response:
        req = protocol.ExportRequest.model_validate(request_data)
        if not req.source_folder or not req.destination_folder:
            raise ValueError("export requires source_folder and destination_folder")
        result = self.service.export(req.source_folder, req.destination_folder, req.mode)
        return protocol.ExportResponse(total=result.total, copied=result.copied,
                                       skipped=result.skipped, failed=result.failed)

    def _get_thumbnail_path(self, request_data: dict) -> protocol.Response:
        req = protocol.GetThumbnailPathRequest.model_validate(request_data)
        return protocol.PathResponse(path=self.service.get_thumbnail_path(req.filename, session_id=req.session_id))

    def _get_preview_path(self, request_data: dict) -> protocol.Response:
        req = protocol.GetPreviewPathRequest.model_validate(request_data)
        return protocol.PathResponse(path=self.service.get_preview_path(req.filename, session_id=req.session_id))

    def _get_exif(self, request_data: dict) -> protocol.Response:
        req = protocol.GetExifRequest.model_validate(request_data)
        return protocol.GetExifResponse.from_model(self.service.get_exif(req.image_path))

    def _clear_cache(self, request_data: dict) -> protocol.Response:
        req = protocol.ClearCacheRequest.model_validate(request_data)
        return protocol.BytesFreedResponse(bytes_freed=self.service.clear_cache(req.session_id))

    def _clear_all_cache(self, request_data: dict) -> protocol.Response:
        return protocol.BytesFreedResponse(bytes_freed=self.service.clear_all_cache())

    def _forget_session(self, request_data: dict) -> protocol.Response:
        req = protocol.ForgetSessionRequest.model_validate(request_data)
        return protocol.BytesFreedResponse(bytes_freed=self.service.forget_session(req.session_id))

    def _clear_all_labels(self, request_data: dict) -> protocol.Response:
        return protocol.ClearAllLabelsResponse(count=self.service.clear_all_labels())

    def _get_storage_info(self, request_data: dict) -> protocol.Response:
        return protocol.GetStorageInfoResponse.from_model(self.service.get_storage_info())

    def _get_system_info(self, request_data: dict) -> protocol.Response:
        return protocol.GetSystemInfoResponse.from_model(self.service.get_system_info())

    def _set_thread_count(self, request_data: dict) -> protocol.Response:
        req = protocol.SetThreadCountRequest.model_validate(request_data)
        self.service.set_thread_count(req.thread_count)
        return protocol.Response()
