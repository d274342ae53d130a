#!/usr/bin/env python
"""启动服务器脚本"""
import uvicorn
import sys
import os

# 添加项目路径
sys.path.insert(0, os.path.dirname(__file__))

if __name__ == "__main__":
    print("正在启动 CVPlus 服务器...")
    uvicorn.run(
        "cvplus.main:app",
        host=os.getenv("HOST", "127.0.0.1"),
        port=int(os.getenv("PORT", "8000")),
        reload=os.getenv("RELOAD", "true").lower() == "true",
        log_level="info"
    )
