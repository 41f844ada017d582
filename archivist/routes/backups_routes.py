"""
Backup routes - archive listing, manual backup trigger, scheduler and bucket status.
"""

import logging

from flask import Blueprint, jsonify

from archivist import get_settings
from archivist.backup.catalog import load_catalog
from archivist.backup.executor import execute_backup
from archivist.backup.storage import StorageError, create_storage


logger = logging.getLogger(__name__)

bp = Blueprint('backups', __name__, url_prefix='/api/backups')


@bp.route('/', methods=['GET'])
def list_backups():
    """
    Get list of all archives in the bucket.

    Returns:
        JSON array of archives, oldest first
    """
    settings = get_settings()

    try:
        catalog = load_catalog(create_storage(settings), settings.timezone)
    except StorageError as e:
        return jsonify({'error': str(e)}), 502

    backups_data = []
    for archive in catalog:
        backups_data.append({
            'name': archive.display_name,
            'key': archive.name,
            'timestamp': archive.timestamp.isoformat(),
            'size': archive.size
        })

    return jsonify(backups_data)


@bp.route('/run', methods=['POST'])
def run_backup():
    """
    Trigger a one-off backup.

    Queued on the scheduler when it is running in this process, otherwise
    executed synchronously.

    Returns:
        JSON with queue confirmation or the backup result
    """
    from archivist.scheduler import is_scheduler_running, trigger_backup_now

    if is_scheduler_running():
        try:
            job_id = trigger_backup_now()
            return jsonify({
                'message': 'Backup has been queued for immediate execution',
                'job_id': job_id
            }), 202
        except Exception as e:
            return jsonify({'error': str(e)}), 500

    result = execute_backup(get_settings(), one_off=True)
    response = {
        'state': result.state.value,
        'archive_name': result.archive_name,
        'fingerprint': result.fingerprint,
        'size': result.size,
        'uploaded': result.uploaded,
        'skipped': result.skipped
    }

    if not result.succeeded:
        response['error'] = result.error_message
        return jsonify(response), 500

    return jsonify(response)


@bp.route('/scheduled-jobs', methods=['GET'])
def get_scheduled_jobs_info():
    """
    Get information about currently scheduled jobs.

    Returns:
        JSON array of scheduled jobs with next run times (empty when the
        scheduler is not running in this process)
    """
    from archivist.scheduler import get_scheduled_jobs

    return jsonify(get_scheduled_jobs())


@bp.route('/test-connection', methods=['POST'])
def check_connection():
    """
    Check that the backup bucket is reachable with the configured credentials.

    Returns:
        JSON with success flag, 400 with the storage error otherwise
    """
    settings = get_settings()

    try:
        create_storage(settings).test_connection()
        return jsonify({
            'success': True,
            'message': f'Successfully connected to S3 bucket: {settings.backup_bucket}'
        })
    except StorageError as e:
        logger.warning(f"Storage error during connection test: {e}")
        return jsonify({'success': False, 'error': str(e)}), 400
