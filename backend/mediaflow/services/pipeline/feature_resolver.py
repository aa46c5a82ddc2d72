"""
Feature resolution for a processing run.

Intersects the configuration toggles of a media type with the
availability of the capability categories they depend on.
"""

import logging

from mediaflow.config import ProcessingConfig
from mediaflow.models.schemas import FeatureSet, MediaType
from mediaflow.services.plugins import CapabilityCategory, CapabilityRegistry

logger = logging.getLogger(__name__)

# feature -> capability category it depends on (None = local only)
FEATURE_CATEGORIES: dict[MediaType, dict[str, CapabilityCategory | None]] = {
    MediaType.IMAGE: {
        "object_detection": CapabilityCategory.OBJECT_DETECTION,
        "ocr": CapabilityCategory.OCR,
        "ai_description": CapabilityCategory.IMAGE_ANALYSIS,
        "thumbnails": None,
        "quality_analysis": None,
        "tag_generation": CapabilityCategory.TAGGING,
    },
    MediaType.AUDIO: {
        "transcription": CapabilityCategory.TRANSCRIPTION,
        "speaker_diarization": CapabilityCategory.TRANSCRIPTION,
        "sentiment_analysis": CapabilityCategory.SENTIMENT,
        "quality_analysis": None,
    },
    MediaType.VIDEO: {
        "transcription": CapabilityCategory.TRANSCRIPTION,
        "thumbnails": None,
        "ocr": CapabilityCategory.OCR,
        "quality_analysis": None,
    },
}


class FeatureResolver:
    """
    Resolves the concrete feature set of a run.

    A feature is enabled when its toggle (<medium>.enable_<feature>) is on
    and, for provider-backed features, the registry has at least one
    enabled plugin for its category. Toggled-on features without a
    provider are disabled and reported in FeatureSet.unavailable.

    Example:
        resolver = FeatureResolver(config, registry)
        features = resolver.resolve(MediaType.IMAGE)
        features.is_enabled("ocr")
    """

    def __init__(self, config: ProcessingConfig, registry: CapabilityRegistry):
        """
        Initialize resolver.

        Args:
            config: Processing configuration with feature toggles
            registry: Capability registry consulted for availability
        """
        self.config = config
        self.registry = registry

    def resolve(self, media_type: MediaType) -> FeatureSet:
        """
        Resolve enabled features for a media type.

        Args:
            media_type: Detected media type

        Returns:
            FeatureSet for this run
        """
        features = FeatureSet(media_type=media_type)

        for feature, category in FEATURE_CATEGORIES[media_type].items():
            if not self.config.is_feature_enabled(f"{media_type.value}.enable_{feature}"):
                features.enabled[feature] = False
                continue

            if category is not None and not self.registry.is_feature_available(category):
                logger.info(
                    f"{media_type.value}.{feature} enabled but no provider for "
                    f"{category.value}, disabling"
                )
                features.enabled[feature] = False
                features.unavailable[feature] = category.value
                continue

            features.enabled[feature] = True

        return features

    @staticmethod
    def category_for(media_type: MediaType, feature: str) -> CapabilityCategory | None:
        """Capability category a feature depends on (None for local features)."""
        return FEATURE_CATEGORIES[media_type].get(feature)
