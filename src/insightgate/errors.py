#
#  Copyright (C) 2017-2025 Dremio Corporation
#
#  Licensed under the Apache License, Version 2.0 (the "License");
#  you may not use this file except in compliance with the License.
#  You may obtain a copy of the License at
#
#      http://www.apache.org/licenses/LICENSE-2.0
#
#  Unless required by applicable law or agreed to in writing, software
#  distributed under the License is distributed on an "AS IS" BASIS,
#  WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
#  See the License for the specific language governing permissions and
#  limitations under the License.
#
from enum import StrEnum
from typing import Optional


class ErrorKind(StrEnum):
    SCHEMA_VALIDATION = "SchemaValidationError"
    RESOURCE_NOT_ACCESSIBLE = "ResourceNotAccessible"
    COLUMN_NOT_ACCESSIBLE = "ColumnNotAccessible"
    TENANT_CONTEXT_MISSING = "TenantContextMissing"
    TENANT_CONTEXT_MALFORMED = "TenantContextMalformed"
    INJECTION_PATTERN_DETECTED = "InjectionPatternDetected"
    STORE_EXECUTION = "StoreExecutionError"


class InsightGateError(Exception):
    kind: ErrorKind = None

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.field = field


class SchemaValidationError(InsightGateError):
    kind = ErrorKind.SCHEMA_VALIDATION


class ResourceNotAccessible(InsightGateError):
    kind = ErrorKind.RESOURCE_NOT_ACCESSIBLE


class ColumnNotAccessible(InsightGateError):
    kind = ErrorKind.COLUMN_NOT_ACCESSIBLE


# whitelist helpers speak of fields, the pipeline of columns
FieldNotAccessible = ColumnNotAccessible


class TenantContextMissing(InsightGateError):
    kind = ErrorKind.TENANT_CONTEXT_MISSING


class TenantContextMalformed(InsightGateError):
    kind = ErrorKind.TENANT_CONTEXT_MALFORMED


class InjectionPatternDetected(InsightGateError):
    kind = ErrorKind.INJECTION_PATTERN_DETECTED


class StoreExecutionError(InsightGateError):
    kind = ErrorKind.STORE_EXECUTION
