"""
Shared test fixtures and utilities.
"""
import os
import pytest
import jwt
from datetime import datetime, timedelta
from src.core.exceptions import StorageException, TranscodeException
from src.models.multipart_session import RemoteMultipartSession
from src.models.transcode_job import MediaInfo, Rendition, TranscodeOutput
from src.repositories.object_storage import ObjectStorage
from src.services.progress import ProgressListener
from src.services.transcoder import MASTER_MANIFEST_NAME, Transcoder, build_master_manifest

JWT_SECRET = "dev-secret-change-in-production"
JWT_ALGORITHM = "HS256"


def make_token(sub: str = "test_user", role: str = None, expires_in: timedelta = timedelta(hours=1)) -> str:
    """Sign a token the way the external issuer does."""
    payload = {
        "sub": sub,
        "exp": datetime.utcnow() + expires_in,
        "iat": datetime.utcnow()
    }
    if role:
        payload["role"] = role
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM)


@pytest.fixture
def auth_headers():
    """Generate valid JWT token and return authorization headers."""
    return {"Authorization": f"Bearer {make_token()}"}


@pytest.fixture
def other_user_headers():
    """Headers for a second, unrelated owner."""
    return {"Authorization": f"Bearer {make_token(sub='other_user')}"}


@pytest.fixture
def admin_headers():
    """Headers carrying an admin role claim."""
    return {"Authorization": f"Bearer {make_token(sub='admin_user', role='admin')}"}


@pytest.fixture
def app_settings(tmp_path, monkeypatch):
    """Test environment: fake AWS credentials, test bucket and a private scratch dir."""
    monkeypatch.setenv('AWS_ACCESS_KEY_ID', 'testing')
    monkeypatch.setenv('AWS_SECRET_ACCESS_KEY', 'testing')
    monkeypatch.setenv('AWS_SECURITY_TOKEN', 'testing')
    monkeypatch.setenv('AWS_SESSION_TOKEN', 'testing')
    monkeypatch.setenv('AWS_REGION', 'us-east-1')
    monkeypatch.setenv('AWS_DEFAULT_REGION', 'us-east-1')
    monkeypatch.setenv('S3_BUCKET_NAME', 'test-bucket')
    monkeypatch.setenv('SCRATCH_DIR', str(tmp_path / 'scratch'))
    monkeypatch.setenv('RETRY_DELAY_BASE_SECONDS', '0')
    monkeypatch.setenv('ENVIRONMENT', 'test')

    from src.core import config, dependencies
    original = config.settings
    config.settings = config.Settings()
    dependencies.clear_caches()

    yield config.settings

    config.settings = original
    dependencies.clear_caches()


class FakeStorage(ObjectStorage):
    """In-memory object storage with failure injection."""

    def __init__(self, fail_parts: dict = None, put_fails=None):
        self.objects = {}
        self.parts = {}
        self.sessions = {}
        self.fail_parts = dict(fail_parts or {})
        self.put_fails = put_fails or (lambda key: False)
        self.authorize_calls = 0
        self.finalize_calls = 0
        self.part_attempts = []
        self.put_order = []
        self.deleted = []
        self.cancelled = []

    def authorize(self):
        self.authorize_calls += 1
        return "credential"

    def open_multipart(self, remote_name, content_type=None):
        session = RemoteMultipartSession(f"session-{len(self.sessions) + 1}", remote_name)
        self.sessions[session.session_id] = session
        self.parts[session.session_id] = []
        return session

    def upload_part(self, session, index, data):
        self.part_attempts.append(index)
        if self.fail_parts.get(index, 0) > 0:
            self.fail_parts[index] -= 1
            raise StorageException(f"Injected failure on part {index}", detail="connection reset")
        part_id = f"etag-{index}"
        self.parts[session.session_id].append(data)
        session.commit_part(index, part_id)
        return part_id

    def finalize(self, session, ordered_part_ids):
        self.finalize_calls += 1
        session.seal()
        self.objects[session.remote_name] = b"".join(self.parts[session.session_id])
        session.remote_file_id = f"file-{session.session_id}"
        return session.remote_file_id

    def put_object(self, remote_name, data, content_type=None):
        if self.put_fails(remote_name):
            raise StorageException(f"Injected failure storing {remote_name}")
        self.objects[remote_name] = data
        self.put_order.append(remote_name)
        return "version-1"

    def derive_url(self, remote_name):
        return f"https://cdn.example.com/{remote_name}"

    def delete(self, remote_name, file_id=None):
        self.objects.pop(remote_name, None)
        self.deleted.append(remote_name)
        return True

    def list_unfinished(self):
        return [
            {'session_id': session.session_id, 'remote_name': session.remote_name,
             'initiated_at': session.created_at}
            for session in self.sessions.values()
            if not session.sealed and session.session_id not in self.cancelled
        ]

    def cancel_multipart(self, remote_name, session_id):
        self.cancelled.append(session_id)
        return True


class FakeTranscoder(Transcoder):
    """Writes small placeholder HLS output instead of running ffmpeg."""

    def __init__(self, height: int = 1080, duration: float = 12.5, fail: bool = False,
                 drop_top_rendition: bool = False, segments: int = 2):
        self.height = height
        self.duration = duration
        self.fail = fail
        self.drop_top_rendition = drop_top_rendition
        self.segments = segments
        self.requested_ladders = []

    def probe(self, input_path):
        return MediaInfo(self.height * 16 // 9, self.height, self.duration)

    def transcode(self, input_path, ladder, output_dir):
        self.requested_ladders.append([rung.height for rung in ladder])
        if self.fail:
            raise TranscodeException("Transcoding failed for 720p", detail="ffmpeg exited with status 1")

        produced = ladder[:-1] if self.drop_top_rendition else ladder
        renditions = []
        for spec in produced:
            folder = os.path.join(output_dir, spec.name)
            os.makedirs(folder, exist_ok=True)
            segment_paths = []
            for number in range(self.segments):
                path = os.path.join(folder, f"segment_{number:03d}.ts")
                with open(path, 'wb') as segment:
                    segment.write(b"ts-bytes")
                segment_paths.append(path)
            playlist_path = os.path.join(folder, f"{spec.name}.m3u8")
            with open(playlist_path, 'w') as playlist:
                playlist.write("#EXTM3U\n")
            renditions.append(Rendition(spec, playlist_path, segment_paths))

        manifest_path = os.path.join(output_dir, MASTER_MANIFEST_NAME)
        with open(manifest_path, 'w') as manifest:
            manifest.write(build_master_manifest(renditions))
        return TranscodeOutput(manifest_path, renditions, self.duration)


class RecordingListener(ProgressListener):
    """Captures every published event in order."""

    def __init__(self):
        self.events = []

    def on_event(self, event):
        self.events.append(event)

    def of_type(self, event_type: str):
        return [event for event in self.events if event.event_type.value == event_type]
