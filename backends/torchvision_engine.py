"""
Default on-device engine — pretrained torchvision models, CPU friendly.

  classification: MobileNetV3-Large, ImageNet-1k categories
  localization:   Faster R-CNN MobileNetV3-Large 320 FPN, COCO categories
                  (opt-in via LOCAL_OBJECT_LOCALIZATION=true, it is much slower)

Install with the `local` extra:  pip install -e ".[local]"
Weights are downloaded by torchvision on first use and cached in ~/.cache/torch.
"""
from __future__ import annotations

import logging

import torch
from PIL import Image
from torchvision import models
from torchvision.models import detection
from torchvision.transforms.functional import pil_to_tensor

from backends.base import BoundingBox
from backends.local_backend import Observation, RecognitionEngine

logger = logging.getLogger(__name__)

TOP_K = 10
DETECTION_SCORE_FLOOR = 0.3


class TorchvisionEngine(RecognitionEngine):

    def __init__(self, with_localization: bool = False, top_k: int = TOP_K) -> None:
        self.name = "torchvision/mobilenet_v3_large"
        self.top_k = top_k

        weights = models.MobileNet_V3_Large_Weights.DEFAULT
        self._classifier = models.mobilenet_v3_large(weights=weights).eval()
        self._preprocess = weights.transforms()
        self._categories: list[str] = weights.meta["categories"]

        self._detector = None
        self._detector_categories: list[str] = []
        if with_localization:
            det_weights = detection.FasterRCNN_MobileNet_V3_Large_320_FPN_Weights.DEFAULT
            self._detector = detection.fasterrcnn_mobilenet_v3_large_320_fpn(weights=det_weights).eval()
            self._detector_categories = det_weights.meta["categories"]
            self.name += "+frcnn"

    def classify(self, image: Image.Image) -> list[Observation]:
        batch = self._preprocess(image.convert("RGB")).unsqueeze(0)
        with torch.inference_mode():
            probabilities = self._classifier(batch).softmax(dim=1)[0]
        top = torch.topk(probabilities, k=min(self.top_k, probabilities.numel()))
        return [
            Observation(identifier=self._categories[idx], confidence=float(p))
            for p, idx in zip(top.values.tolist(), top.indices.tolist())
        ]

    def localize(self, image: Image.Image) -> list[Observation]:
        if self._detector is None:
            return []
        rgb = image.convert("RGB")
        width, height = rgb.size
        tensor = pil_to_tensor(rgb).float() / 255.0
        with torch.inference_mode():
            output = self._detector([tensor])[0]

        observations: list[Observation] = []
        for box, label, score in zip(
            output["boxes"].tolist(), output["labels"].tolist(), output["scores"].tolist()
        ):
            if score < DETECTION_SCORE_FLOOR:
                continue
            x1, y1, x2, y2 = box
            x1, x2 = max(0.0, x1) / width, min(float(width), x2) / width
            y1, y2 = max(0.0, y1) / height, min(float(height), y2) / height
            if x2 <= x1 or y2 <= y1:
                continue
            observations.append(Observation(
                identifier=self._detector_categories[label],
                confidence=float(score),
                bounding_box=BoundingBox(x1, y1, x2 - x1, y2 - y1),
            ))
        return observations
