import torch

DEVICE = torch.device("cuda" if torch.cuda.is_available() else "cpu")

# detector label (COCO as emitted by most hub checkpoints) -> hazard table name
LABEL_ALIASES = {
    "knife": "knife",
    "scissors": "scissors",
    "car": "car",
    "truck": "car",
    "bus": "car",
    "motorcycle": "car",
    "bicycle": "bicycle",
    "sink": "sink",
    "oven": "stove",
    "toaster": "appliance",
    "microwave": "appliance",
    "hair drier": "appliance",
    "refrigerator": "appliance",
    "tv": "appliance",
    "laptop": "appliance",
    "fire hydrant": "road",
    "traffic light": "road",
    "stop sign": "road",
    "bottle": "small_object",
    "cup": "small_object",
    "remote": "small_object",
    "cell phone": "small_object",
}
