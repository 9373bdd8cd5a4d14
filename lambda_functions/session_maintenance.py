"""
Lambda function for manual upload maintenance.
Invoked by an operator to list or cancel unfinished multipart sessions. Never scheduled.

Event:
    {"action": "list"}
    {"action": "cleanup", "older_than_hours": 24, "dry_run": true}
"""
import json
from src.core.exceptions import StorageException, ValidationException
from src.core.logger import get_logger
from src.repositories.s3_repository import S3Repository
from src.services.maintenance_service import MaintenanceService

logger = get_logger(__name__)

DEFAULT_OLDER_THAN_HOURS = 24


def handler(event, context):
    """
    Lambda handler for session maintenance.

    Args:
        event: Dict with action (list or cleanup), older_than_hours and dry_run
        context: Lambda context object

    Returns:
        dict: statusCode plus JSON body
    """
    event = event or {}
    maintenance_service = MaintenanceService(S3Repository())

    try:
        action = event.get('action', 'list')

        if action == 'list':
            sessions = maintenance_service.list_unfinished()
            logger.info(f"Found {sessions.count} unfinished sessions")
            return {
                'statusCode': 200,
                'body': sessions.model_dump_json()
            }

        if action == 'cleanup':
            older_than_hours = _parse_hours(event.get('older_than_hours', DEFAULT_OLDER_THAN_HOURS))
            dry_run = _parse_bool(event.get('dry_run', True))
            cancelled = maintenance_service.cancel_stale_sessions(older_than_hours, dry_run=dry_run)
            return {
                'statusCode': 200,
                'body': json.dumps({
                    'message': f"{'Would cancel' if dry_run else 'Cancelled'} {len(cancelled)} sessions",
                    'cancelled_sessions': cancelled,
                    'older_than_hours': older_than_hours,
                    'dry_run': dry_run
                })
            }

        raise ValidationException(f"Unknown action '{action}'. Allowed: list, cleanup")

    except ValidationException as e:
        logger.warning(f"Validation error: {e.message}")
        return {
            'statusCode': 400,
            'body': json.dumps({
                'error': 'Validation Error',
                'message': e.message
            })
        }

    except StorageException as e:
        logger.error(f"Storage error: {e.message}")
        return {
            'statusCode': 502,
            'body': json.dumps({
                'error': 'Storage Error',
                'message': e.message
            })
        }

    except Exception as e:
        logger.error(f"Unexpected error: {str(e)}")
        return {
            'statusCode': 500,
            'body': json.dumps({
                'error': 'Internal Server Error',
                'message': str(e)
            })
        }


def _parse_hours(value) -> float:
    try:
        hours = float(value)
    except (TypeError, ValueError):
        raise ValidationException(f"older_than_hours must be a number, got {value!r}")
    if hours < 0:
        raise ValidationException("older_than_hours cannot be negative")
    return hours


def _parse_bool(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ('1', 'true', 'yes')
    return bool(value)
