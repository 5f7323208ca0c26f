"""
3D Model Conversion Pipeline

Converts uploaded 3D models (GLB, GLTF, FBX, OBJ) into WebAR-ready
artifacts and publishes them behind a short shareable link.

Pipeline stages:
1. Convert - Input format -> canonical GLB
2. Analyze - Vertex/triangle/texture statistics
3. Optimize - Draco compression for WebAR
4. USDZ - iOS AR Quick Look artifact
5. Thumbnail - Rendered preview image
6. Upload - GLB, USDZ and thumbnail to object storage
7. Share - Short AR link and QR code
"""

__version__ = "0.1.0"
