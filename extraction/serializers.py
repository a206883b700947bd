from urllib.parse import urlparse

from rest_framework import serializers

from .extractors import extract_src_from_embed


def is_http_url(u: str) -> bool:
    try:
        p = urlparse(u)
        return p.scheme in ("http", "https") and bool(p.netloc)
    except ValueError:
        return False


class FetchVideoDataSerializer(serializers.Serializer):
    url = serializers.CharField(trim_whitespace=True)

    def validate_url(self, value):
        # Allow users to paste full embed markup.
        if "<" in value and "src" in value.lower():
            value = extract_src_from_embed(value) or value
        if not is_http_url(value):
            raise serializers.ValidationError("Invalid URL")
        return value


class DownloadVideoSerializer(serializers.Serializer):
    videoUrl = serializers.CharField(required=False, allow_blank=True, allow_null=True, trim_whitespace=True)
    audioUrl = serializers.CharField(required=False, allow_blank=True, allow_null=True, trim_whitespace=True)
    quality = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    mergeAudio = serializers.BooleanField(required=False, default=False)

    def validate(self, attrs):
        video = attrs.get("videoUrl") or None
        audio = attrs.get("audioUrl") or None
        if not video and not audio:
            raise serializers.ValidationError("videoUrl or audioUrl is required")
        for name, value in (("videoUrl", video), ("audioUrl", audio)):
            if value and not is_http_url(value):
                raise serializers.ValidationError({name: "Invalid URL"})
        attrs["videoUrl"] = video
        attrs["audioUrl"] = audio
        return attrs
