from typing import Optional, Union


class SyncError(Exception):

    def __init__(self, e=None):
        self.error = e

    def __str__(self):
        out = 'There was an error while synchronizing roster data'
        if self.error is None:
            return out + '.'
        else:
            return f'{out}:\n{self.error}'


class ConfigurationError(SyncError):

    def __init__(self, setting: str, value=None):
        self.setting = setting
        self.value = value

    def __str__(self):
        return f'Invalid value for setting "{self.setting}": {self.value!r}'


class MissingSecretError(SyncError):

    def __init__(self, secret_name: str):
        self.secret_name = secret_name

    def __str__(self):
        return f'Secret "{self.secret_name}" could not be found in the ' \
               'credential store.'


class SisConnectionException(SyncError):

    def __init__(self, url: str = None, attempts: int = 0):
        self.url = url
        self.attempts = attempts

    def __str__(self):
        if self.url is None:
            return 'The SIS API endpoint could not be reached.'
        return f'The SIS API endpoint {self.url} could not be reached ' \
               f'after {self.attempts} attempt(s).'


class SisRequestError(SyncError):
    """
    Raised when the SIS API answers with a status that will not be
    retried, or when retries for a retryable status are exhausted.
    The url is always sanitized before it is stored.
    """
    def __init__(self, url: str, status_code: int, attempts: int = 1):
        self.url = url
        self.status_code = status_code
        self.attempts = attempts

    def __str__(self):
        return f'Request to {self.url} failed with status ' \
               f'{self.status_code} after {self.attempts} attempt(s).'


class SisMalformedJsonException(SyncError):

    def __init__(self, json_obj):
        self.obj = json_obj

    def __str__(self):
        return 'Received bad JSON response: ' + str(self.obj)


class SisIncompleteDataException(SyncError):
    """
    When JSON objects fetched from the SIS API cannot be used to
    create new `SisDataObject` objects.
    """
    def __init__(self, json_obj: dict, missing: str = None):
        self.json_obj = json_obj
        self.missing = missing

    def __str__(self):
        if self.missing is not None:
            return f'Received a SIS object missing "{self.missing}":\n' \
                   f'{self.json_obj}'
        return 'Received the following incomplete JSON object from ' \
               f'the SIS:\n{self.json_obj}'


class SisAuthenticationError(SyncError):

    def __init__(self, msg: str = None):
        self.msg = msg

    def __str__(self):
        if self.msg is None:
            return 'There was a problem with SIS API authentication.'
        else:
            return self.msg


class SisNotAuthorizedError(SisAuthenticationError):

    def __init__(self, status_code: int = None):
        super().__init__()
        self.status_code = status_code

    def __str__(self):
        if self.status_code is None:
            return 'SIS credentials were rejected by the API.'
        return f'SIS credentials were rejected by the API ' \
               f'(status {self.status_code}).'


class SchoolDatabaseError(SyncError):
    """Raised when a school's database cannot be opened."""
    def __init__(self, school_id: int, msg: str):
        self.school_id = school_id
        self.msg = msg

    def __str__(self):
        return f'Could not connect to the database of school ' \
               f'{self.school_id}: {self.msg}'


class SchoolNotFoundError(SyncError):

    def __init__(self, school_id: int):
        self.school_id = school_id

    def __str__(self):
        return f'School {self.school_id} does not exist in the catalog.'


class DistrictNotFoundError(SyncError):

    def __init__(self, district_id: Union[int, str]):
        self.district_id = district_id

    def __str__(self):
        return f'District {self.district_id} does not exist in the catalog.'


class SyncCancelledError(SyncError):

    def __str__(self):
        return 'The sync was cancelled before it could finish.'


class LockLostError(SyncError):

    def __init__(self, scope: str, lock_id: str):
        self.scope = scope
        self.lock_id = lock_id

    def __str__(self):
        return f'Lock "{self.scope}" ({self.lock_id}) expired or was taken ' \
               'over before the sync finished.'


class WorkshopReconciliationError(SyncError):

    def __init__(self, sync_id: int, e=None):
        self.sync_id = sync_id
        self.error = e

    def __str__(self):
        out = f'Workshop reconciliation failed for sync {self.sync_id}'
        if self.error is None:
            return out + '.'
        return f'{out}: {self.error}'


class InvalidScheduleError(SyncError):

    def __init__(self, msg: str, schedule_id: Optional[int] = None):
        self.msg = msg
        self.schedule_id = schedule_id

    def __str__(self):
        if self.schedule_id is None:
            return f'Invalid sync schedule: {self.msg}'
        return f'Invalid sync schedule {self.schedule_id}: {self.msg}'
