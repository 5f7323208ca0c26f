"""
Blender scripts run in background mode.

Scripts are fixed text. Paths and options are passed as arguments after
``--`` on the Blender command line and read from ``sys.argv`` inside the
script, so no file path is ever interpolated into Python source.
"""

from pathlib import Path

# Usage: blender --background --factory-startup --python convert.py -- <fbx|obj> <input> <output>
CONVERT_TO_GLB = '''\
import sys

import bpy

argv = sys.argv[sys.argv.index("--") + 1:]
source_format, input_path, output_path = argv[0], argv[1], argv[2]

# Clear the default scene
bpy.ops.object.select_all(action="SELECT")
bpy.ops.object.delete(use_global=False)

if source_format == "fbx":
    bpy.ops.import_scene.fbx(filepath=input_path)
elif source_format == "obj":
    if hasattr(bpy.ops.wm, "obj_import"):
        bpy.ops.wm.obj_import(filepath=input_path)
    else:
        bpy.ops.import_scene.obj(filepath=input_path)
else:
    print(f"Unsupported source format: {source_format}", file=sys.stderr)
    sys.exit(2)

bpy.ops.export_scene.gltf(
    filepath=output_path,
    export_format="GLB",
    export_materials="EXPORT",
    export_cameras=False,
    export_lights=False,
)

sys.exit(0)
'''

# Usage: blender --background --factory-startup --python thumbnail.py -- <input.glb> <output.jpg> <size>
RENDER_THUMBNAIL = '''\
import sys

import bpy

argv = sys.argv[sys.argv.index("--") + 1:]
input_path, output_path, size = argv[0], argv[1], int(argv[2])

bpy.ops.object.select_all(action="SELECT")
bpy.ops.object.delete(use_global=False)

bpy.ops.import_scene.gltf(filepath=input_path)

bpy.ops.object.camera_add(location=(7.36, -6.93, 4.96))
camera = bpy.context.object
camera.rotation_euler = (1.1, 0, 0.785)

bpy.ops.object.light_add(type="SUN", location=(4, 4, 8))
sun = bpy.context.object
sun.data.energy = 5

scene = bpy.context.scene
scene.camera = camera
scene.render.filepath = output_path
scene.render.image_settings.file_format = "JPEG"
scene.render.resolution_x = size
scene.render.resolution_y = size
scene.render.resolution_percentage = 100

bpy.ops.render.render(write_still=True)

sys.exit(0)
'''


def write_script(work_dir: Path, name: str, source: str) -> Path:
    """Write a Blender script into the job workspace."""
    script_path = work_dir / name
    script_path.write_text(source)
    return script_path


def blender_command(blender_path: str, script_path: Path, *script_args) -> list:
    """Build the Blender command line for a background script run."""
    return [
        blender_path,
        '--background',
        '--factory-startup',
        '--python', str(script_path),
        '--',
        *[str(a) for a in script_args],
    ]
