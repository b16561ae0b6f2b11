from rest_framework import serializers

from . import exceptions as msg
from .domain import MAX_SIZE, OID_PATTERN, HashAlgo


def _messages(message, *keys):
    return {key: message for key in keys}


class BatchObjectSerializer(serializers.Serializer):
    oid = serializers.RegexField(
        OID_PATTERN,
        trim_whitespace=False,
        error_messages=_messages(msg.INVALID_OID_MESSAGE, 'required', 'null', 'blank', 'invalid', 'max_length'),
    )
    # null or missing means 0: git-lfs omits the size for empty files.
    size = serializers.IntegerField(
        required=False,
        allow_null=True,
        min_value=0,
        max_value=MAX_SIZE,
        error_messages=_messages(msg.INVALID_SIZE_MESSAGE, 'invalid', 'min_value', 'max_value', 'max_string_length'),
    )

    default_error_messages = {'invalid': msg.BATCH_PARSE_MESSAGE}

    def validate_size(self, value):
        return value or 0

    def to_internal_value(self, data):
        validated = super().to_internal_value(data)
        validated.setdefault('size', 0)
        return validated


class BatchRequestSerializer(serializers.Serializer):
    operation = serializers.ChoiceField(
        choices=['upload', 'download'],
        error_messages=_messages(msg.INVALID_OPERATION_MESSAGE, 'required', 'null', 'invalid_choice'),
    )
    objects = BatchObjectSerializer(
        many=True,
        allow_empty=False,
        error_messages=_messages(msg.NO_OBJECTS_MESSAGE, 'required', 'null', 'empty', 'not_a_list'),
    )
    # Only "basic" is offered; whatever the client lists here is ignored.
    transfers = serializers.JSONField(required=False, allow_null=True)
    ref = serializers.JSONField(required=False, allow_null=True)
    hash_algo = serializers.ChoiceField(
        choices=[algo.value for algo in HashAlgo],
        required=False,
        allow_null=True,
        allow_blank=True,
        error_messages=_messages(msg.INVALID_HASH_ALGO_MESSAGE, 'invalid_choice'),
    )

    default_error_messages = {'invalid': msg.BATCH_PARSE_MESSAGE}

    def validate_hash_algo(self, value):
        return HashAlgo.parse(value)


class VerifyRequestSerializer(serializers.Serializer):
    oid = serializers.RegexField(
        OID_PATTERN,
        trim_whitespace=False,
        error_messages={
            'required': msg.VERIFY_OID_REQUIRED_MESSAGE,
            'null': msg.VERIFY_OID_REQUIRED_MESSAGE,
            'blank': msg.VERIFY_OID_REQUIRED_MESSAGE,
            'invalid': msg.INVALID_OID_MESSAGE,
        },
    )
    size = serializers.IntegerField(
        min_value=1,
        max_value=MAX_SIZE,
        error_messages=_messages(
            msg.VERIFY_SIZE_MESSAGE, 'required', 'null', 'invalid', 'min_value', 'max_value', 'max_string_length',
        ),
    )

    default_error_messages = {'invalid': msg.VERIFY_PARSE_MESSAGE}
