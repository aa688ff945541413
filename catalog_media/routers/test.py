from fastapi import APIRouter, Depends
from fastapi.responses import HTMLResponse, JSONResponse

from ..cdn import CdnStorage
from ..schemas import CdnTestResponse
from .images import get_cdn_storage


router = APIRouter()


@router.get("/cdn", response_model=CdnTestResponse)
def cdn_connection_test(storage: CdnStorage = Depends(get_cdn_storage)):
    """检测 CDN 存储配置与连通性。"""
    settings = storage.settings
    if not storage.is_configured():
        return JSONResponse(
            status_code=500,
            content={
                "success": False,
                "error": "CDN 存储未正确配置",
                "details": {
                    "storageUrl": bool(settings.STORAGE_URL),
                    "serverBaseUrl": bool(settings.STORAGE_SERVER_BASE_URL),
                    "accessKey": bool(settings.STORAGE_SERVER_ACCESS_KEY),
                },
            },
        )

    probe = storage.probe()
    return CdnTestResponse(
        success=probe.success,
        configured=True,
        connection=probe.as_dict(),
        environment={
            "storageUrl": settings.STORAGE_URL,
            "serverBaseUrl": settings.STORAGE_SERVER_BASE_URL,
            "accessKeySet": bool(settings.STORAGE_SERVER_ACCESS_KEY),
        },
    )


@router.get("/upload", response_class=HTMLResponse)
def upload_form() -> str:
    # 简易测试页：POST 到 /images/upload
    return """
<!DOCTYPE html>
<html lang=\"zh-CN\">
<head>
  <meta charset=\"UTF-8\" />
  <meta name=\"viewport\" content=\"width=device-width, initial-scale=1.0\" />
  <title>商品图片上传测试</title>
  <style>
    body { font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, 'Helvetica Neue', Arial, 'Noto Sans', 'PingFang SC', 'Hiragino Sans GB', 'Microsoft YaHei', sans-serif; padding: 24px; }
    .card { max-width: 720px; margin: 0 auto; border: 1px solid #ddd; border-radius: 8px; padding: 20px; }
    label { display: block; margin-top: 12px; font-weight: 600; }
    input { width: 100%; padding: 8px; margin-top: 6px; }
    button { margin-top: 16px; padding: 10px 16px; font-weight: 600; }
    pre { background: #f7f7f7; padding: 12px; white-space: pre-wrap; word-break: break-all; }
  </style>
  <script>
    async function handleSubmit(e) {
      e.preventDefault();
      const form = document.getElementById('uploadForm');
      const fd = new FormData(form);
      for (const name of ['alt', 'position']) {
        if (!fd.get(name)) fd.delete(name);
      }
      const resp = await fetch('/images/upload', { method: 'POST', body: fd });
      const text = await resp.text();
      try {
        const json = JSON.parse(text);
        document.getElementById('result').textContent = JSON.stringify(json, null, 2);
        if (json.items && json.items.length) {
          const img = document.getElementById('preview');
          img.src = json.items[0].cdn_url;
          img.style.display = 'block';
        }
      } catch (err) {
        document.getElementById('result').textContent = text;
      }
    }
  </script>
  </head>
  <body>
    <div class=\"card\">
      <h2>商品图片上传测试</h2>
      <form id=\"uploadForm\" onsubmit=\"handleSubmit(event)\">
        <label>文件</label>
        <input type=\"file\" name=\"file\" accept=\"image/*\" required />

        <label>商品ID</label>
        <input type=\"number\" name=\"product_id\" min=\"1\" required />

        <label>替代文本（可选）</label>
        <input type=\"text\" name=\"alt\" maxlength=\"160\" placeholder=\"不填按商品标题生成\" />

        <label>排序位置（可选）</label>
        <input type=\"number\" name=\"position\" min=\"0\" placeholder=\"不填追加到末尾\" />

        <button type=\"submit\">上传</button>
      </form>
      <h3>响应</h3>
      <pre id=\"result\"></pre>
      <img id=\"preview\" alt=\"预览\" style=\"display:none; max-width: 100%; margin-top: 12px; border:1px solid #eee;\" />
    </div>
  </body>
</html>
    """
