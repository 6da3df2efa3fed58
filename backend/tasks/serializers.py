"""
Serializers for the planner API.

Input serializers reject malformed requests before anything is scored.
Energy values are accepted in any known spelling (peak/high, medium/normal,
low) and converted to the canonical ``EnergyLevel`` here, so views never
see raw strings.
"""

from rest_framework import serializers

from .models import Task
from .vocabulary import energy_to_task_value, parse_energy


class EnergyField(serializers.Field):
    """Any energy spelling in, canonical ``EnergyLevel`` out."""

    default_error_messages = {
        'invalid': 'Invalid energy level: {value}. Valid options: peak, high, medium, normal, low',
    }

    def to_internal_value(self, data):
        level = parse_energy(data)
        if level is None:
            self.fail('invalid', value=data)
        return level

    def to_representation(self, value):
        return value.value


class TaskInputSerializer(serializers.ModelSerializer):
    """
    Serializer for creating and editing tasks.

    ``energy_level`` may be given in the planning vocabulary; it is stored
    in the task vocabulary (peak/medium/low).
    """

    energy_level = EnergyField(required=False)
    estimated_minutes = serializers.IntegerField(min_value=1, required=False)

    class Meta:
        model = Task
        fields = [
            'title',
            'description',
            'priority',
            'energy_level',
            'estimated_minutes',
            'deadline',
            'skipped',
        ]
        extra_kwargs = {
            'description': {'required': False},
            'skipped': {'required': False},
        }

    def validate_title(self, value):
        """Ensure title is not empty or just whitespace."""
        if not value or not value.strip():
            raise serializers.ValidationError("Title cannot be empty")
        return value.strip()

    def validate_skipped(self, value):
        """A task can be restored from skipped, never skipped through an edit."""
        if value:
            raise serializers.ValidationError("Use the skip endpoint to skip a task")
        return value

    def validate(self, attrs):
        if 'energy_level' in attrs:
            attrs['energy_level'] = energy_to_task_value(attrs['energy_level'])
        if attrs.get('skipped') is False:
            attrs['skip_reason'] = None
        return attrs


class TaskOutputSerializer(serializers.ModelSerializer):
    """
    Serializer for task output.
    """

    class Meta:
        model = Task
        fields = [
            'id',
            'title',
            'description',
            'priority',
            'energy_level',
            'estimated_minutes',
            'deadline',
            'completed',
            'completed_at',
            'skipped',
            'skip_reason',
            'carried_from_date',
            'position',
            'archived',
            'parent',
            'blocker_note',
            'created_at',
            'updated_at',
        ]
        read_only_fields = fields


class SkipInputSerializer(serializers.Serializer):
    reason = serializers.CharField(required=False, allow_blank=True, allow_null=True, default=None)

    def validate_reason(self, value):
        if not value or not value.strip():
            return None
        return value.strip()


class KeepInputSerializer(serializers.Serializer):
    reason = serializers.CharField(max_length=1000)

    def validate_reason(self, value):
        if not value.strip():
            raise serializers.ValidationError("Tell us what's blocking this task")
        return value.strip()


class PlanInputSerializer(serializers.Serializer):
    """
    Serializer for plan preview and finalize requests.
    """

    energy_level = EnergyField()
    available_minutes = serializers.IntegerField(
        min_value=1,
        error_messages={
            'min_value': 'Available minutes must be greater than zero'
        }
    )
    toggles = serializers.ListField(
        child=serializers.IntegerField(),
        required=False,
        default=list
    )


class PlannedTaskActionSerializer(serializers.Serializer):
    action = serializers.ChoiceField(
        choices=[
            ('start', 'Start'),
            ('complete', 'Complete'),
            ('skip', 'Skip'),
            ('defer', 'Defer')
        ]
    )
    actual_minutes = serializers.IntegerField(min_value=0, required=False, allow_null=True)


class SessionInputSerializer(serializers.Serializer):
    """The persisted session slice."""

    user_energy = EnergyField(required=False)
    last_planning_date = serializers.DateField(required=False, allow_null=True)
    default_timer_minutes = serializers.IntegerField(min_value=1, max_value=240, required=False)
    default_available_minutes = serializers.IntegerField(min_value=1, max_value=1440, required=False)
    reset_planning = serializers.BooleanField(required=False, default=False)


class ParsePayloadSerializer(serializers.Serializer):
    """Raw AI parse output; normalization happens after this."""

    result = serializers.JSONField()
    create = serializers.BooleanField(required=False, default=False)


class BreakdownPayloadSerializer(serializers.Serializer):
    steps = serializers.JSONField()
